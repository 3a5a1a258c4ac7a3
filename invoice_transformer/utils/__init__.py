"""Invoice Transformer - Utilities Package"""

from invoice_transformer.utils.decorators import (
    audit_log,
    measure_performance,
    retry_on_failure,
    performance_context,
)

__all__ = [
    'audit_log',
    'measure_performance',
    'retry_on_failure',
    'performance_context',
]
