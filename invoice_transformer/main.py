"""
Invoice Transformer - Main Entry Point
Command-line interface for the folder watcher and one-off transforms.
"""
import argparse
import logging
import os
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from invoice_transformer.config import AppSettings, load_settings
from invoice_transformer.core.parsers import FormatError, load_invoice_record
from invoice_transformer.core.transformer import InvoiceTransformer
from invoice_transformer.processing.coordinator import FileCoordinator
from invoice_transformer.processing.lifecycle import TIMESTAMP_FORMAT, InvoiceProcessor, output_file_name
from invoice_transformer.processing.notifications import NotificationDispatcher
from invoice_transformer.processing.stats import ProcessingStats


LOG_FILE_PREFIX = 'InvoiceTransformer'


class DailyFileHandler(logging.FileHandler):
    """
    Writes to one log file per calendar day.

    The file name carries the date of the record being written, so a
    long-running watcher switches to a new file after midnight.
    """

    def __init__(self, log_dir: Union[str, Path], prefix: str = LOG_FILE_PREFIX,
                 clock: Callable[[], datetime] = datetime.now):
        self.log_dir = Path(log_dir)
        self.prefix = prefix
        self.clock = clock
        self._day = clock().date()
        super().__init__(self.path_for(self._day), encoding='utf-8', delay=True)

    def path_for(self, day) -> Path:
        return self.log_dir / f"{self.prefix}_{day.isoformat()}.log"

    def emit(self, record):
        day = self.clock().date()
        if day != self._day:
            # Called under the handler lock
            if self.stream is not None:
                self.stream.close()
                self.stream = None
            self.baseFilename = os.path.abspath(self.path_for(day))
            self._day = day
        super().emit(record)


def setup_logging(verbose: bool = False, log_dir: Optional[Path] = None):
    """Configure application logging"""
    level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(DailyFileHandler(log_dir))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


def build_coordinator(settings: AppSettings, watch: bool = True) -> FileCoordinator:
    """Wire the processor, stats, dispatcher and coordinator from settings"""
    folders = settings.folders
    folders.ensure_directories()

    stats = ProcessingStats()
    dispatcher = NotificationDispatcher(enabled=settings.notifications.enabled)
    processor = InvoiceProcessor(
        output_dir=folders.output_folder,
        archive_dir=folders.archive_folder,
        error_dir=folders.error_folder,
        archive_processed_files=folders.archive_processed_files,
        stats=stats,
        dispatcher=dispatcher,
        lock_retry_attempts=folders.lock_retry_attempts,
        lock_retry_delay=folders.lock_retry_delay_seconds,
    )
    return FileCoordinator(
        processor,
        folders.input_folder,
        pattern=folders.file_pattern,
        poll_interval=folders.polling_interval_seconds,
        debounce_seconds=folders.debounce_seconds,
        daily_summary_time=settings.notifications.summary_time,
        dispatcher=dispatcher,
        watch=watch,
    )


def log_settings(settings: AppSettings):
    folders = settings.folders
    logging.info(f"Input folder:   {folders.input_folder}")
    logging.info(f"Output folder:  {folders.output_folder}")
    logging.info(f"Archive folder: {folders.archive_folder} "
                 f"({'archive' if folders.archive_processed_files else 'delete'} processed files)")
    logging.info(f"Error folder:   {folders.error_folder}")
    logging.info(f"Polling every {folders.polling_interval_seconds}s")


def watch_folder(args):
    """Handle the watch command: run until interrupted"""
    settings = load_settings(args.config)
    setup_logging(args.verbose, settings.folders.log_folder)
    log_settings(settings)

    coordinator = build_coordinator(settings)
    stop_event = threading.Event()

    def request_stop(signum, frame):
        stop_event.set()

    previous_handler = signal.signal(signal.SIGTERM, request_stop)
    try:
        coordinator.start()
        while not stop_event.wait(1.0):
            pass
        logging.info("Shutdown requested (SIGTERM)")
    except KeyboardInterrupt:
        logging.info("Shutdown requested")
    finally:
        coordinator.stop(final_summary=args.final_summary)
        if previous_handler is None:
            previous_handler = signal.SIG_DFL
        signal.signal(signal.SIGTERM, previous_handler)
    return 0


def scan_folder(args):
    """Handle the scan command: process the current backlog once"""
    settings = load_settings(args.config)
    setup_logging(args.verbose, settings.folders.log_folder)
    log_settings(settings)

    coordinator = build_coordinator(settings, watch=False)
    outcomes = coordinator.run_once()
    coordinator.stop()

    succeeded = sum(1 for outcome in outcomes if outcome.succeeded)
    failed = sum(1 for outcome in outcomes if outcome.failed)
    skipped = len(outcomes) - succeeded - failed

    print("\n" + "=" * 60)
    print("INVOICE TRANSFORMER SCAN SUMMARY")
    print("=" * 60)
    print(f"Files found:       {len(outcomes)}")
    print(f"Transformed:       {succeeded}")
    print(f"Failed:            {failed}")
    print(f"Left in place:     {skipped}")
    print("=" * 60)

    return 0 if failed == 0 else 1


def transform_single(args):
    """Handle the file command: transform one file without routing it"""
    setup_logging(args.verbose)
    file_path = Path(args.file)

    if not file_path.exists():
        logging.error(f"File not found: {file_path}")
        return 1

    try:
        record = load_invoice_record(file_path)
    except FormatError as e:
        logging.error(f"Rejected {file_path.name}: {e}")
        return 1

    document = InvoiceTransformer().transform(record)

    if args.output:
        output_dir = Path(args.output)
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / output_file_name(file_path, datetime.now().strftime(TIMESTAMP_FORMAT))
        document.write(output_path)
        logging.info(f"Output saved to: {output_path}")
    else:
        sys.stdout.write(document.to_bytes().decode('utf-8'))

    return 0


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='Invoice Transformer - Convert SalesInvoicePrint XML to BASDA invoices'
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    watch_parser = subparsers.add_parser('watch', help='Watch the input folder and process files as they arrive')
    watch_parser.add_argument('--config', '-c', help='Path to appsettings.json')
    watch_parser.add_argument('--final-summary', action='store_true', help='Emit a summary on shutdown')
    watch_parser.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')

    scan_parser = subparsers.add_parser('scan', help='Process files currently in the input folder and exit')
    scan_parser.add_argument('--config', '-c', help='Path to appsettings.json')
    scan_parser.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')

    file_parser = subparsers.add_parser('file', help='Transform a single file')
    file_parser.add_argument('file', help='Path to SalesInvoicePrint XML file')
    file_parser.add_argument('--output', '-o', help='Output directory (default: stdout)')
    file_parser.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.command == 'watch':
            return watch_folder(args)
        elif args.command == 'scan':
            return scan_folder(args)
        elif args.command == 'file':
            return transform_single(args)
    except KeyboardInterrupt:
        logging.info("Operation cancelled by user")
        return 130
    except Exception as e:
        logging.exception(f"Unexpected error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
