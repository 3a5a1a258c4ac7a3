"""Invoice Transformer - Reports Package"""

from invoice_transformer.reports.generator import (
    generate_error_details,
    generate_summary_report,
)

__all__ = [
    'generate_error_details',
    'generate_summary_report',
]
