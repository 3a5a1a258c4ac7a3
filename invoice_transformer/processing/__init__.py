"""Invoice Transformer - Processing Package"""

from invoice_transformer.processing.coordinator import FileCoordinator
from invoice_transformer.processing.lifecycle import InvoiceProcessor, LockError, WriteError
from invoice_transformer.processing.notifications import (
    LoggingNotifier,
    NotificationDispatcher,
)
from invoice_transformer.processing.stats import ProcessingStats

__all__ = [
    'FileCoordinator',
    'InvoiceProcessor',
    'LockError',
    'WriteError',
    'LoggingNotifier',
    'NotificationDispatcher',
    'ProcessingStats',
]
