from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Union

from pydantic import ValidationError

from app.models import MODEL_BY_KIND, Document, DocumentKind
from app.persistence import ENVELOPE_KEY, read_envelope, write_envelope

logger = logging.getLogger(__name__)

# File names match the data directory the service has always shipped with.
FILE_BY_KIND: dict[DocumentKind, str] = {
    DocumentKind.PURCHASE_ORDER: "PO.json",
    DocumentKind.CREDIT_NOTE: "Credit_Note.json",
    DocumentKind.DEBIT_NOTE: "Debit_Note.json",
    DocumentKind.DELIVERY_ORDER_TAX_INVOICE: "Delivery_OrderTax_Invoice.json",
    DocumentKind.RECEIPT_TAX_INVOICE: "ReceiptTax_Invoice.json",
}

Collection = Union[Document, list[Document]]


class DocumentStoreError(RuntimeError):
    """Raised when a backing file is missing or malformed."""


def _parse_collection(kind: DocumentKind, path: Path, payload: Any) -> Collection:
    if not isinstance(payload, dict) or ENVELOPE_KEY not in payload:
        raise DocumentStoreError(f"{path}: expected an object with a '{ENVELOPE_KEY}' key")

    model = MODEL_BY_KIND[kind]
    body = payload[ENVELOPE_KEY]
    if body is None:
        return []
    try:
        if isinstance(body, list):
            return [model.model_validate(record) for record in body]
        return model.model_validate(body)
    except ValidationError as exc:
        raise DocumentStoreError(f"{path}: invalid {kind.value} record: {exc}") from exc


def _load_collections(data_dir: Path) -> Dict[DocumentKind, Collection]:
    collections: Dict[DocumentKind, Collection] = {}
    for kind, filename in FILE_BY_KIND.items():
        path = data_dir / filename
        try:
            payload = read_envelope(path)
        except FileNotFoundError as exc:
            raise DocumentStoreError(f"{path}: file not found") from exc
        except json.JSONDecodeError as exc:
            raise DocumentStoreError(f"{path}: invalid JSON: {exc}") from exc
        except OSError as exc:
            raise DocumentStoreError(f"{path}: cannot read: {exc}") from exc
        collections[kind] = _parse_collection(kind, path, payload)
    return collections


class DocumentStore:
    """In-memory snapshot of every document collection, one JSON file per kind.

    Writes go through :meth:`commit`, which holds the kind's lock while the
    file is replaced and the in-memory value swapped.
    """

    def __init__(self, data_dir: Path, collections: Dict[DocumentKind, Collection]) -> None:
        self.data_dir = Path(data_dir)
        self._collections = dict(collections)
        self._locks = {kind: threading.Lock() for kind in DocumentKind}

    @classmethod
    def load(cls, data_dir: Union[str, Path]) -> "DocumentStore":
        data_dir = Path(data_dir)
        collections = _load_collections(data_dir)
        logger.info(
            "Loaded document store",
            extra={"data_dir": str(data_dir), "counts": _counts(collections)},
        )
        return cls(data_dir, collections)

    def path_for(self, kind: DocumentKind) -> Path:
        return self.data_dir / FILE_BY_KIND[kind]

    def get(self, kind: DocumentKind) -> Collection:
        value = self._collections[kind]
        return list(value) if isinstance(value, list) else value

    def records(self, kind: DocumentKind) -> list[Document]:
        value = self._collections[kind]
        if isinstance(value, list):
            return list(value)
        return [value] if value is not None else []

    @contextmanager
    def exclusive(self, kind: DocumentKind) -> Iterator[None]:
        lock = self._locks[kind]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()

    def commit(self, kind: DocumentKind, document: Document) -> None:
        """Replace the whole collection for *kind* with *document* and flush it.

        The in-memory value only changes once the file has been written, so a
        StorageError leaves both untouched.
        """
        model = MODEL_BY_KIND[kind]
        if not isinstance(document, model):
            raise TypeError(f"Expected {model.__name__}, got {type(document).__name__}")

        with self.exclusive(kind):
            payload = {ENVELOPE_KEY: document.model_dump(mode="json", exclude_unset=True)}
            write_envelope(self.path_for(kind), payload)
            self._collections[kind] = document

        logger.info("Committed %s", kind.value, extra={"no": document.No})

    def reload(self) -> None:
        collections = _load_collections(self.data_dir)
        for kind in DocumentKind:
            with self.exclusive(kind):
                self._collections[kind] = collections[kind]
        logger.info("Reloaded document store", extra={"counts": _counts(collections)})

    def info(self) -> Dict[str, Any]:
        return {
            "data_dir": str(self.data_dir),
            "collections": {
                kind.value: {
                    "file": FILE_BY_KIND[kind],
                    "count": len(self.records(kind)),
                    "shape": "list" if isinstance(self._collections[kind], list) else "record",
                }
                for kind in DocumentKind
            },
        }


def _counts(collections: Dict[DocumentKind, Collection]) -> Dict[str, int]:
    return {
        kind.value: len(value) if isinstance(value, list) else 1
        for kind, value in collections.items()
    }
