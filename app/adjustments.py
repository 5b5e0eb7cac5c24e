from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from app.document_store import DocumentStore
from app.models import (
    AdjustmentNote,
    CreditNote,
    DebitNote,
    DocumentKind,
    DocumentReference,
    ReceiptTaxInvoice,
    check_totals,
)
from app.parse_utils import epoch_millis, iso_timestamp

logger = logging.getLogger(__name__)

PURPOSE = "Price Adjustment"

_NOTE_TYPES = {
    DocumentKind.CREDIT_NOTE: {
        "model": CreditNote,
        "TypeCode": "CN",
        "TypeNameTh": "ใบลดหนี้",
        "TypeNameEn": "Credit Note",
    },
    DocumentKind.DEBIT_NOTE: {
        "model": DebitNote,
        "TypeCode": "DN",
        "TypeNameTh": "ใบเพิ่มหนี้",
        "TypeNameEn": "Debit Note",
    },
}

_COPIED_FIELDS = {"Seller", "Buyer", "LineItems", "TotalQuantity", "CurrencyCode", "Currency"}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AdjustmentEngine:
    """Derives credit and debit notes from receipts when a price changes.

    A receipt billed above the corrected price gets a credit note, one billed
    below it gets a debit note. The new note replaces whatever note of that
    kind was stored before and is written to disk before it is returned.
    """

    def __init__(self, store: DocumentStore, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.store = store
        self._clock = clock or _utc_now
        self._id_lock = threading.Lock()
        self._last_stamp = 0

    def find_receipt(self, no: str) -> Optional[ReceiptTaxInvoice]:
        for receipt in self.store.records(DocumentKind.RECEIPT_TAX_INVOICE):
            if receipt.No == no:
                return receipt
        return None

    def create_credit_note_from_receipt(self, no: str, new_price: float) -> Optional[CreditNote]:
        return self._issue(DocumentKind.CREDIT_NOTE, self._receipt_for_adjustment(no), new_price)

    def create_debit_note_from_receipt(self, no: str, new_price: float) -> Optional[DebitNote]:
        return self._issue(DocumentKind.DEBIT_NOTE, self._receipt_for_adjustment(no), new_price)

    def adjust_receipt(self, no: str, new_price: float) -> Optional[AdjustmentNote]:
        """Issue whichever note the price change calls for, or None if it matches."""
        receipt = self._receipt_for_adjustment(no)
        if receipt is None:
            return None
        if receipt.Amount > new_price:
            return self._issue(DocumentKind.CREDIT_NOTE, receipt, new_price)
        if receipt.Amount < new_price:
            return self._issue(DocumentKind.DEBIT_NOTE, receipt, new_price)
        logger.info("No adjustment needed", extra={"no": no, "amount": receipt.Amount})
        return None

    def _receipt_for_adjustment(self, no: str) -> Optional[ReceiptTaxInvoice]:
        receipt = self.find_receipt(no)
        if receipt is None:
            logger.info("Receipt not found", extra={"no": no})
            return None
        if receipt.Amount is None:
            logger.warning("Receipt has no Amount; cannot adjust", extra={"no": no})
            return None
        for warning in check_totals(receipt):
            logger.warning("Receipt totals inconsistent: %s", warning, extra={"no": no})
        return receipt

    def _issue(
        self,
        kind: DocumentKind,
        receipt: Optional[ReceiptTaxInvoice],
        new_price: float,
    ) -> Optional[AdjustmentNote]:
        if receipt is None:
            return None

        if kind is DocumentKind.CREDIT_NOTE and receipt.Amount > new_price:
            difference = receipt.Amount - new_price
        elif kind is DocumentKind.DEBIT_NOTE and receipt.Amount < new_price:
            difference = new_price - receipt.Amount
        else:
            logger.info(
                "Price change does not call for a %s",
                kind.value,
                extra={"no": receipt.No, "amount": receipt.Amount, "new_price": new_price},
            )
            return None

        note = self._build_note(kind, receipt, new_price, difference)
        self.store.commit(kind, note)
        logger.info(
            "Issued %s",
            kind.value,
            extra={"no": note.No, "receipt": receipt.No, "difference": difference},
        )
        return note

    def _next_number(self, prefix: str, now: datetime) -> str:
        # Millisecond stamps, bumped so two notes issued in the same millisecond differ.
        with self._id_lock:
            stamp = max(epoch_millis(now), self._last_stamp + 1)
            self._last_stamp = stamp
        return f"{prefix}-{stamp}"

    def _build_note(
        self,
        kind: DocumentKind,
        receipt: ReceiptTaxInvoice,
        new_price: float,
        difference: float,
    ) -> AdjustmentNote:
        note_type = _NOTE_TYPES[kind]
        now = self._clock()
        tax_amount = (new_price * receipt.tax_rate) / 100
        return note_type["model"](
            TypeCode=note_type["TypeCode"],
            TypeNameTh=note_type["TypeNameTh"],
            TypeNameEn=note_type["TypeNameEn"],
            No=self._next_number(note_type["TypeCode"], now),
            Date=iso_timestamp(now),
            Purpose=PURPOSE,
            References=DocumentReference(
                TypeCode=receipt.TypeCode,
                No=receipt.No,
                Date=receipt.Date,
            ),
            OriginalAmount=receipt.Amount,
            CorrectAmount=new_price,
            DifferenceAmount=difference,
            Amount=new_price,
            TaxAmount=tax_amount,
            Total=new_price + tax_amount,
            **receipt.model_dump(include=_COPIED_FIELDS, exclude_unset=True),
        )
