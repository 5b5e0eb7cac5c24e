# app/models.py
from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from app.parse_utils import approx_equal


class DocumentKind(str, Enum):
    PURCHASE_ORDER = "PurchaseOrder"
    CREDIT_NOTE = "CreditNote"
    DEBIT_NOTE = "DebitNote"
    DELIVERY_ORDER_TAX_INVOICE = "DeliveryOrderTaxInvoice"
    RECEIPT_TAX_INVOICE = "ReceiptTaxInvoice"


class _Record(BaseModel):
    # Keys we don't model still have to survive a rewrite of the file.
    model_config = ConfigDict(extra="allow")


CodeValue = Union[int, str, None]
Number = Union[int, float, None]


class Party(_Record):
    ID: CodeValue = None
    Name: Optional[str] = None
    TaxID: Optional[str] = None
    TaxIDType: Optional[str] = None
    Branch: CodeValue = None
    BuildingNo: CodeValue = None
    BuildingName: Optional[str] = None
    Street: Optional[str] = None
    District: Optional[str] = None
    City: Optional[str] = None
    Province: Optional[str] = None
    PostalCode: CodeValue = None
    CountryCode: Optional[str] = None
    CountryName: Optional[str] = None
    Telephone: Optional[str] = None
    Fax: Optional[str] = None
    Contact: Optional[str] = None
    Department: Optional[str] = None
    Email: Optional[str] = None


class TaxLine(_Record):
    Code: Optional[str] = None
    Rate: Optional[float] = None
    Amount: Optional[float] = None


class TaxBreakdown(_Record):
    Tax: Union[TaxLine, list[TaxLine], None] = None

    @property
    def primary_rate(self) -> float:
        """Rate of the single tax line, or of the first one when Tax is a list."""
        tax = self.Tax
        if isinstance(tax, list):
            tax = tax[0] if tax else None
        if tax is None or tax.Rate is None:
            return 0.0
        return float(tax.Rate)


class LineItem(_Record):
    No: CodeValue = None
    Id: CodeValue = None
    Name: Optional[str] = None
    Description: Optional[str] = None
    Quantity: Number = None
    Unit: Optional[str] = None
    Price: Optional[float] = None
    Allowances: Union[str, float, None] = None
    Amount: Optional[float] = None
    Tax: Optional[TaxLine] = None
    TaxAmount: Optional[float] = None
    Total: Optional[float] = None


class LineItemList(_Record):
    Item: list[LineItem] = []


class SummaryRow(_Record):
    Label: Optional[str] = None
    Amount: Optional[float] = None


class SummaryTable(_Record):
    Data: list[SummaryRow] = []


class DocumentSettings(_Record):
    TaxInclusive: Optional[bool] = None
    InlineTax: Optional[bool] = None
    InlineAllowance: Optional[bool] = None
    CumulativeAllowance: Optional[bool] = None


class DocumentReference(_Record):
    TypeCode: Optional[str] = None
    No: Optional[str] = None
    Date: Optional[str] = None


class Document(_Record):
    TypeCode: Optional[str] = None
    TypeNameTh: Optional[str] = None
    TypeNameEn: Optional[str] = None
    No: Optional[str] = None
    Date: Optional[str] = None
    Seller: Optional[Party] = None
    Buyer: Optional[Party] = None
    DueDate: Optional[str] = None
    PurposeCode: Optional[str] = None
    Purpose: Optional[str] = None
    References: Optional[DocumentReference] = None
    CurrencyCode: Optional[str] = None
    Currency: Optional[str] = None
    LineItems: Optional[LineItemList] = None
    TotalQuantity: Number = None
    Quantity: Number = None
    Amount: Optional[float] = None
    ChargeTotal: Optional[float] = None
    AllowanceTotal: Optional[float] = None
    TaxBasisAmount: Optional[float] = None
    NonVat: Optional[float] = None
    TaxAmount: Optional[float] = None
    Taxes: Optional[TaxBreakdown] = None
    Total: Optional[float] = None
    Summary: Optional[SummaryTable] = None
    TotalEn: Optional[str] = None
    TotalTh: Optional[str] = None
    Settings: Optional[DocumentSettings] = None
    Manager: Optional[str] = None
    Position: Optional[str] = None

    @property
    def tax_rate(self) -> float:
        return self.Taxes.primary_rate if self.Taxes else 0.0


class PurchaseOrder(Document):
    # Purchase orders carry a free-text reference rather than a back-pointer.
    References: Union[DocumentReference, str, None] = None
    Remark: Optional[str] = None
    IssueToBranch: CodeValue = None


class AdjustmentNote(Document):
    OriginalAmount: Optional[float] = None
    CorrectAmount: Optional[float] = None
    DifferenceAmount: Optional[float] = None


class CreditNote(AdjustmentNote):
    pass


class DebitNote(AdjustmentNote):
    pass


class DeliveryOrderTaxInvoice(Document):
    Remark: Optional[str] = None
    FormOfPayment: Optional[str] = None


class ReceiptTaxInvoice(Document):
    pass


class PurchaseOrderView(PurchaseOrder):
    RelatedInvoices: list[ReceiptTaxInvoice] = []
    RelatedDeliveryOrders: list[DeliveryOrderTaxInvoice] = []


class AdjustmentRequest(BaseModel):
    No: str = Field(min_length=1)
    newPrice: float = Field(gt=0)


MODEL_BY_KIND: dict[DocumentKind, type[Document]] = {
    DocumentKind.PURCHASE_ORDER: PurchaseOrder,
    DocumentKind.CREDIT_NOTE: CreditNote,
    DocumentKind.DEBIT_NOTE: DebitNote,
    DocumentKind.DELIVERY_ORDER_TAX_INVOICE: DeliveryOrderTaxInvoice,
    DocumentKind.RECEIPT_TAX_INVOICE: ReceiptTaxInvoice,
}


def check_totals(document: Document, tolerance: float = 0.02) -> list[str]:
    """Return warnings when Total does not equal Amount + TaxAmount.

    Nothing in the service enforces this; it is offered to callers that want it.
    """
    warnings: list[str] = []
    if document.Amount is None or document.Total is None:
        warnings.append("Amount or Total missing")
        return warnings

    expected = document.Amount + (document.TaxAmount or 0.0)
    if not approx_equal(expected, document.Total, tolerance):
        warnings.append(
            f"Total {document.Total:.2f} != Amount + TaxAmount {expected:.2f}"
        )
    return warnings
