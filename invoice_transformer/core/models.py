"""
Data models for invoice transformation.
Using Pydantic for validation and type safety.
"""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator


# Allowed drift between gross and net + vat after source rounding
TOTALS_TOLERANCE = Decimal('0.01')


class AddressInfo(BaseModel):
    """Postal address as carried by the source document"""
    lines: List[str] = Field(default_factory=list, max_length=6)
    postcode: str = ""
    country_code: str = ""
    country: str = ""
    contact_name: str = ""

    @field_validator('lines')
    @classmethod
    def drop_blank_lines(cls, v):
        return [line for line in v if line and line.strip()]


class LineItem(BaseModel):
    """Single invoice line, either an ordered item or a charge"""
    item_number: str = ""
    product_code: str = ""
    description: str = ""
    quantity: Decimal = Decimal('0')
    unit_of_measure: str = "EACH"
    unit_price: Decimal = Decimal('0')
    line_total: Decimal = Decimal('0')
    vat_code: str = ""
    vat_rate: Decimal = Decimal('0')
    vat_value: Decimal = Decimal('0')
    is_charge: bool = False


class VatGroup(BaseModel):
    """One VAT rate bracket from the source summary list"""
    code: str = ""
    description: str = ""
    rate: Decimal = Decimal('0')
    principal_value: Decimal = Decimal('0')
    vat_value: Decimal = Decimal('0')

    @property
    def gross_value(self) -> Decimal:
        return self.principal_value + self.vat_value


class InvoiceRecord(BaseModel):
    """
    Fully-defaulted intermediate invoice.

    Built once per input file by the normalizer. Every field is present,
    so the transformer never deals with missing data.
    """
    # Company
    company_name: str = ""
    vat_registration_no: str = ""
    company_registration_no: str = ""
    company_address: AddressInfo = Field(default_factory=AddressInfo)

    # Identifiers
    invoice_number: str = ""
    customer_order_number: str = ""
    your_reference: str = ""
    despatch_number: str = ""
    sales_order_number: str = ""

    # Dates
    invoice_date: date
    order_date: date
    despatch_date: date

    # Customer
    customer_account: str = ""
    customer_name: str = ""
    invoice_to_name: str = ""
    deliver_to_address: AddressInfo = Field(default_factory=AddressInfo)
    invoice_to_address: AddressInfo = Field(default_factory=AddressInfo)

    # Currency
    currency_code: str = "GBP"
    currency_name: str = "Sterling"

    # Payment terms
    payment_days: int = 30
    early_payment_discount_percent: Decimal = Decimal('0')

    # Totals
    net_total: Decimal = Decimal('0')
    vat_total: Decimal = Decimal('0')
    gross_total: Decimal = Decimal('0')

    line_items: List[LineItem] = Field(default_factory=list)
    vat_groups: List[VatGroup] = Field(default_factory=list)

    @model_validator(mode='after')
    def check_totals(self):
        if abs(self.gross_total - (self.net_total + self.vat_total)) > TOTALS_TOLERANCE:
            raise ValueError(
                f'Gross total {self.gross_total} does not equal '
                f'net {self.net_total} + VAT {self.vat_total}'
            )
        return self

    @property
    def charge_count(self) -> int:
        return sum(1 for line in self.line_items if line.is_charge)


class FileState(str, Enum):
    """States a file passes through in the processing lifecycle"""
    DISCOVERED = "discovered"
    LOCK_CHECK = "lock_check"
    RETRYING = "retrying"
    ABANDONED = "abandoned"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class FileOutcome(BaseModel):
    """Result of running one file through the lifecycle"""
    file_name: str
    state: FileState
    timestamp: datetime = Field(default_factory=datetime.now)
    output_path: Optional[str] = None
    archive_path: Optional[str] = None
    error_path: Optional[str] = None
    message: Optional[str] = None
    processing_time_ms: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.state == FileState.SUCCESS

    @property
    def failed(self) -> bool:
        return self.state == FileState.FAILURE


class ProcessingError(BaseModel):
    """Failure kept for the daily summary"""
    timestamp: datetime = Field(default_factory=datetime.now)
    file_name: str
    message: str
    detail: Optional[str] = None
