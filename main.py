from __future__ import annotations

import base64
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Request, status

from app.adjustments import AdjustmentEngine
from app.document_store import DocumentStore, DocumentStoreError
from app.models import (
    AdjustmentRequest,
    CreditNote,
    DebitNote,
    DeliveryOrderTaxInvoice,
    DocumentKind,
    PurchaseOrderView,
    ReceiptTaxInvoice,
)
from app.persistence import StorageError
from app.queries import get_document, get_purchase_order


def _get_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value.strip() if value else None


logging.basicConfig(level=(_get_env("LOG_LEVEL") or "INFO").upper())
logger = logging.getLogger("tax-documents")

APP_VERSION = os.getenv("APP_VERSION", "0.1.0")
DATA_DIR = _get_env("DATA_DIR") or os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")
BASIC_USER = _get_env("BASIC_USER")
BASIC_PASS = _get_env("BASIC_PASS")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        app.state.store = DocumentStore.load(DATA_DIR)
        app.state.engine = AdjustmentEngine(app.state.store)
    except DocumentStoreError:
        logger.exception("Failed to load documents from %s", DATA_DIR)
        raise
    yield


app = FastAPI(lifespan=lifespan)


def get_store(request: Request) -> DocumentStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Store not loaded")
    return store


def get_engine(request: Request) -> AdjustmentEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Store not loaded")
    return engine


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Basic"},
    )


def require_basic_auth(request: Request) -> None:
    """Require basic auth only when both BASIC_USER and BASIC_PASS are set."""
    if BASIC_USER is None or BASIC_PASS is None:
        return

    auth_header = request.headers.get("authorization")
    if not auth_header or not auth_header.lower().startswith("basic "):
        raise _unauthorized()

    token = auth_header.split(" ", 1)[1].strip()
    try:
        decoded = base64.b64decode(token).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        raise _unauthorized()

    if ":" not in decoded:
        raise _unauthorized()

    username, password = decoded.split(":", 1)
    if username != BASIC_USER or password != BASIC_PASS:
        raise _unauthorized()


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/version")
async def version() -> Dict[str, Any]:
    return {
        "status": "ok",
        "revision": os.getenv("K_REVISION"),
        "service": os.getenv("K_SERVICE"),
        "app_version": APP_VERSION,
    }


@app.get("/purchase-orders/{no}", response_model=Optional[PurchaseOrderView], response_model_exclude_none=True)
async def purchase_order(no: str, store: DocumentStore = Depends(get_store)):
    return get_purchase_order(store, no)


@app.get("/credit-notes", response_model=Union[list[CreditNote], CreditNote], response_model_exclude_none=True)
async def credit_notes(store: DocumentStore = Depends(get_store)):
    return get_document(store, DocumentKind.CREDIT_NOTE)


@app.get("/debit-notes", response_model=Union[list[DebitNote], DebitNote], response_model_exclude_none=True)
async def debit_notes(store: DocumentStore = Depends(get_store)):
    return get_document(store, DocumentKind.DEBIT_NOTE)


@app.get(
    "/delivery-order-tax-invoices",
    response_model=Union[list[DeliveryOrderTaxInvoice], DeliveryOrderTaxInvoice],
    response_model_exclude_none=True,
)
async def delivery_order_tax_invoices(store: DocumentStore = Depends(get_store)):
    return get_document(store, DocumentKind.DELIVERY_ORDER_TAX_INVOICE)


@app.get(
    "/receipt-tax-invoices",
    response_model=Union[list[ReceiptTaxInvoice], ReceiptTaxInvoice],
    response_model_exclude_none=True,
)
async def receipt_tax_invoices(store: DocumentStore = Depends(get_store)):
    return get_document(store, DocumentKind.RECEIPT_TAX_INVOICE)


@app.post(
    "/credit-notes/from-receipt",
    response_model=Optional[CreditNote],
    response_model_exclude_none=True,
    dependencies=[Depends(require_basic_auth)],
)
async def create_credit_note_from_receipt(
    body: AdjustmentRequest,
    engine: AdjustmentEngine = Depends(get_engine),
):
    try:
        return engine.create_credit_note_from_receipt(body.No, body.newPrice)
    except StorageError as exc:
        logger.exception("Credit note write failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@app.post(
    "/debit-notes/from-receipt",
    response_model=Optional[DebitNote],
    response_model_exclude_none=True,
    dependencies=[Depends(require_basic_auth)],
)
async def create_debit_note_from_receipt(
    body: AdjustmentRequest,
    engine: AdjustmentEngine = Depends(get_engine),
):
    try:
        return engine.create_debit_note_from_receipt(body.No, body.newPrice)
    except StorageError as exc:
        logger.exception("Debit note write failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@app.get("/debug/store-info", dependencies=[Depends(require_basic_auth)])
async def debug_store_info(store: DocumentStore = Depends(get_store)) -> Dict[str, Any]:
    return {"status": "ok", **store.info()}


@app.post("/debug/reload", dependencies=[Depends(require_basic_auth)])
async def debug_reload(store: DocumentStore = Depends(get_store)) -> Dict[str, Any]:
    try:
        store.reload()
    except DocumentStoreError as exc:
        logger.exception("Reload failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    return {"status": "ok", **store.info()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
