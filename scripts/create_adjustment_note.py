#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Optional, Sequence

from app.adjustments import AdjustmentEngine
from app.document_store import DocumentStore, DocumentStoreError
from app.parse_utils import parse_amount
from app.persistence import StorageError


def _env(name: str) -> str | None:
    value = os.getenv(name)
    return value.strip() if value else None


def _parse_price(value: str) -> float:
    price = parse_amount(value)
    if price is None or price <= 0:
        raise argparse.ArgumentTypeError(f"Not a positive amount: {value}")
    return price


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Issue a credit or debit note for a receipt whose price changed."
    )
    parser.add_argument("--data-dir", default=_env("DATA_DIR") or "data", help="Directory holding the JSON files")
    parser.add_argument("--receipt", required=True, help="Receipt number, e.g. RCPT-1")
    parser.add_argument("--price", required=True, type=_parse_price, help="Corrected price, e.g. 900 or 1,250.50")
    parser.add_argument(
        "--kind",
        choices=("auto", "credit", "debit"),
        default="auto",
        help="Force a note type; auto picks from the price change",
    )
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    try:
        store = DocumentStore.load(args.data_dir)
    except DocumentStoreError as exc:
        raise SystemExit(f"Cannot load documents: {exc}")

    engine = AdjustmentEngine(store)
    try:
        if args.kind == "credit":
            note = engine.create_credit_note_from_receipt(args.receipt, args.price)
        elif args.kind == "debit":
            note = engine.create_debit_note_from_receipt(args.receipt, args.price)
        else:
            note = engine.adjust_receipt(args.receipt, args.price)
    except StorageError as exc:
        raise SystemExit(f"Failed to save note: {exc}")

    if note is None:
        print(json.dumps({"status": "no_adjustment", "receipt": args.receipt}, indent=2))
        return 0

    print(json.dumps(note.model_dump(mode="json", exclude_unset=True), indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
