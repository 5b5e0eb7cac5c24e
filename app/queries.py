from __future__ import annotations

from typing import Optional

from app.document_store import Collection, DocumentStore
from app.models import Document, DocumentKind, PurchaseOrderView


def get_document(store: DocumentStore, kind: DocumentKind) -> Collection:
    return store.get(kind)


def _has_references(document: Document) -> bool:
    references = document.References
    if references is None:
        return False
    if isinstance(references, str):
        return bool(references.strip())
    return bool(references.model_dump(exclude_none=True))


def get_purchase_order(store: DocumentStore, no: str) -> Optional[PurchaseOrderView]:
    """Return the first purchase order numbered *no* with its related invoices attached.

    The view is built from dumps of the stored records, so nothing in the
    store is modified.
    """
    purchase_order = next(
        (po for po in store.records(DocumentKind.PURCHASE_ORDER) if po.No == no),
        None,
    )
    if purchase_order is None:
        return None

    view = purchase_order.model_dump()
    view["RelatedInvoices"] = [
        doc.model_dump()
        for doc in store.records(DocumentKind.RECEIPT_TAX_INVOICE)
        if _has_references(doc)
    ]
    view["RelatedDeliveryOrders"] = [
        doc.model_dump()
        for doc in store.records(DocumentKind.DELIVERY_ORDER_TAX_INVOICE)
        if _has_references(doc)
    ]
    return PurchaseOrderView.model_validate(view)
