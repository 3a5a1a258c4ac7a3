"""Invoice Transformer - Core Package"""

from invoice_transformer.core.models import (
    AddressInfo,
    FileOutcome,
    FileState,
    InvoiceRecord,
    LineItem,
    VatGroup,
)
from invoice_transformer.core.parsers import (
    FormatError,
    SalesInvoiceParser,
    TransformerError,
    load_invoice_record,
)
from invoice_transformer.core.transformer import InvoiceTransformer, TargetDocument, transform_record

__all__ = [
    'AddressInfo',
    'FileOutcome',
    'FileState',
    'InvoiceRecord',
    'LineItem',
    'VatGroup',
    'FormatError',
    'SalesInvoiceParser',
    'TransformerError',
    'load_invoice_record',
    'InvoiceTransformer',
    'TargetDocument',
    'transform_record',
]
