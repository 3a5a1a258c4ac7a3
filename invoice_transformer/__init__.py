"""
Invoice Transformer

Watches a folder for SalesInvoicePrint XML files and converts them to
BASDA commercial invoices.
"""

__version__ = '1.0.0'
__license__ = 'MIT'

from invoice_transformer.core import (
    InvoiceRecord,
    FormatError,
    InvoiceTransformer,
    SalesInvoiceParser,
    load_invoice_record,
)

from invoice_transformer.processing import (
    FileCoordinator,
    InvoiceProcessor,
)

__all__ = [
    'InvoiceRecord',
    'FormatError',
    'InvoiceTransformer',
    'SalesInvoiceParser',
    'load_invoice_record',
    'FileCoordinator',
    'InvoiceProcessor',
]
