"""
Report generation utilities.
Creates the error sidecar text and the daily summary body.
"""
from datetime import datetime
from collections import Counter
from typing import Optional


MAX_LISTED_ERRORS = 20


def generate_error_details(file_name: str, message: str,
                           timestamp: Optional[datetime] = None) -> str:
    """
    Text written next to a quarantined file.

    Args:
        file_name: Original source file name
        message: Failure reason
        timestamp: When the failure happened

    Returns:
        Sidecar file contents
    """
    timestamp = timestamp or datetime.now()
    return (
        f"Error processing file: {file_name}\n"
        f"Timestamp: {timestamp.strftime('%Y-%m-%d %H:%M:%S')}\n"
        f"Error: {message}\n"
    )


def generate_summary_report(summary) -> str:
    """
    Generate text summary from a DailySummary event.

    Args:
        summary: Object with success_count, error_count, errors,
                 period_start and timestamp

    Returns:
        Formatted text report
    """
    total = summary.success_count + summary.error_count
    lines = []

    # Header
    lines.append("=" * 70)
    lines.append("INVOICE TRANSFORMER DAILY SUMMARY")
    lines.append("=" * 70)
    lines.append(f"Generated: {summary.timestamp.strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append(f"Period start: {summary.period_start.strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append("")

    lines.append("SUMMARY STATISTICS")
    lines.append("-" * 70)
    lines.append(f"Total Files Processed:     {total}")
    if total:
        lines.append(f"Transformed:               {summary.success_count} "
                     f"({summary.success_count/total*100:.1f}%)")
        lines.append(f"Failed:                    {summary.error_count} "
                     f"({summary.error_count/total*100:.1f}%)")
    else:
        lines.append("No files were processed.")
    lines.append("")

    if summary.errors:
        lines.append("COMMON ERRORS")
        lines.append("-" * 70)
        reasons = Counter(error.message for error in summary.errors)
        for message, count in reasons.most_common(10):
            lines.append(f"{message}")
            lines.append(f"  Occurrences: {count}")
        lines.append("")

        lines.append("FAILED FILES")
        lines.append("-" * 70)
        for error in summary.errors[:MAX_LISTED_ERRORS]:
            lines.append(f"{error.timestamp.strftime('%H:%M:%S')}  {error.file_name}")
            lines.append(f"    {error.message}")
        if len(summary.errors) > MAX_LISTED_ERRORS:
            lines.append(f"... and {len(summary.errors) - MAX_LISTED_ERRORS} more failed files")
        lines.append("")

    lines.append("=" * 70)
    lines.append("END OF REPORT")
    lines.append("=" * 70)

    return "\n".join(lines)
