"""
Per-file lifecycle: lock check, transform, and routing of the source file.

    Discovered -> LockCheck -> {Retrying <-> LockCheck | Abandoned}
               -> Processing -> {Success | Failure}

Every failure is caught here so one bad file never stops the others.
"""
import errno
import logging
import os
import shutil
import time
import traceback
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

from invoice_transformer.core.models import FileOutcome, FileState
from invoice_transformer.core.parsers import SalesInvoiceParser, TransformerError
from invoice_transformer.core.transformer import InvoiceTransformer, TargetDocument
from invoice_transformer.processing.notifications import (
    FileFailed,
    FileProcessed,
    NotificationDispatcher,
)
from invoice_transformer.processing.stats import ProcessingStats
from invoice_transformer.reports.generator import generate_error_details
from invoice_transformer.utils.decorators import (
    audit_log,
    measure_performance,
    performance_context,
    retry_on_failure,
)

if os.name == 'nt':
    import msvcrt
else:
    import fcntl


logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y%m%d_%H%M%S'
DEFAULT_LOCK_RETRY_ATTEMPTS = 5
DEFAULT_LOCK_RETRY_DELAY = 1.0

_LOCK_CONFLICT_ERRNOS = {errno.EACCES, errno.EAGAIN, errno.EDEADLK}


class LockError(TransformerError):
    """Raised when another process still holds the source file"""
    pass


class WriteError(TransformerError):
    """Raised when the output cannot be written or the source cannot be routed"""
    pass


def output_file_name(source: Path, timestamp: str) -> str:
    return f"{source.stem}_Transformed_{timestamp}.xml"


def archive_file_name(source: Path, timestamp: str) -> str:
    return f"{source.stem}_{timestamp}{source.suffix}"


def error_file_name(source: Path, timestamp: str) -> str:
    return f"{source.stem}_{timestamp}_ERROR{source.suffix}"


def error_details_name(source: Path, timestamp: str) -> str:
    return f"{source.stem}_{timestamp}_ERROR.txt"


def _is_lock_conflict(error: OSError) -> bool:
    return isinstance(error, BlockingIOError) or error.errno in _LOCK_CONFLICT_ERRNOS


def _log_state(file_name: str, state: FileState) -> None:
    logger.debug(f"{file_name} -> {state.value}")


def check_exclusive_access(path: Path) -> None:
    """
    Open the file read-only and take a non-blocking exclusive lock on it.

    Raises:
        FileNotFoundError: If the file has disappeared
        LockError: If another process holds the file
        OSError: If the file cannot be read at all
    """
    try:
        f = open(path, 'rb')
    except PermissionError as e:
        # Windows reports a sharing violation as a permission error
        if os.name == 'nt':
            raise LockError(f"File is in use: {path.name} ({e})") from e
        raise

    with f:
        try:
            if os.name == 'nt':
                msvcrt.locking(f.fileno(), msvcrt.LK_NBLCK, 1)
                f.seek(0)
                msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
            else:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except OSError as e:
            if _is_lock_conflict(e):
                raise LockError(f"File is in use: {path.name} ({e})") from e
            raise


class InvoiceProcessor:
    """
    Runs a single source file through the lifecycle.

    Args:
        output_dir: Where transformed documents are written
        archive_dir: Where processed sources go when archiving is on
        error_dir: Quarantine for failed sources and their sidecars
        archive_processed_files: Archive the source on success, else delete it
        stats: Shared success/error counters
        dispatcher: Outbound notification queue
        lock_retry_attempts: Lock checks before a file is abandoned
        lock_retry_delay: Base delay; attempt n waits n * delay seconds
        clock: Source of timestamps
        sleep: Sleep function used between lock checks
    """

    def __init__(self,
                 output_dir: Union[str, Path],
                 archive_dir: Union[str, Path],
                 error_dir: Union[str, Path],
                 archive_processed_files: bool = True,
                 stats: Optional[ProcessingStats] = None,
                 dispatcher: Optional[NotificationDispatcher] = None,
                 lock_retry_attempts: int = DEFAULT_LOCK_RETRY_ATTEMPTS,
                 lock_retry_delay: float = DEFAULT_LOCK_RETRY_DELAY,
                 clock: Callable[[], datetime] = datetime.now,
                 sleep: Callable[[float], None] = time.sleep):
        self.output_dir = Path(output_dir)
        self.archive_dir = Path(archive_dir)
        self.error_dir = Path(error_dir)
        self.archive_processed_files = archive_processed_files
        self.stats = stats or ProcessingStats(clock)
        self.dispatcher = dispatcher
        self.lock_retry_attempts = max(1, lock_retry_attempts)
        self.lock_retry_delay = lock_retry_delay
        self.clock = clock
        self.sleep = sleep
        self.transformer = InvoiceTransformer()

        for directory in (self.output_dir, self.error_dir):
            directory.mkdir(parents=True, exist_ok=True)
        if self.archive_processed_files:
            self.archive_dir.mkdir(parents=True, exist_ok=True)

    def _publish(self, event) -> None:
        if self.dispatcher is not None:
            self.dispatcher.publish(event)

    def wait_for_access(self, path: Path) -> None:
        """
        Lock check with linear backoff.

        Raises:
            LockError: If the file is still locked after the last attempt
        """
        def log_retry(attempt: int, error: BaseException):
            _log_state(path.name, FileState.RETRYING)
            logger.info(
                f"{path.name} is in use, retry {attempt}/{self.lock_retry_attempts - 1} "
                f"in {attempt * self.lock_retry_delay:.1f}s"
            )

        check = retry_on_failure(
            max_attempts=self.lock_retry_attempts,
            delay_seconds=self.lock_retry_delay,
            exceptions=(LockError,),
            linear_backoff=True,
            sleep=self.sleep,
            on_retry=log_retry,
        )(check_exclusive_access)
        check(path)

    @measure_performance
    @audit_log
    def process_file(self, path: Union[str, Path]) -> FileOutcome:
        """
        Process one source file end to end.

        Args:
            path: Source file in the input directory

        Returns:
            FileOutcome describing the terminal state
        """
        path = Path(path)
        file_name = path.name
        _log_state(file_name, FileState.DISCOVERED)

        if not path.is_file():
            logger.debug(f"Skipping {file_name}: no longer present")
            return FileOutcome(file_name=file_name, state=FileState.SKIPPED)

        _log_state(file_name, FileState.LOCK_CHECK)
        try:
            self.wait_for_access(path)
        except FileNotFoundError:
            return FileOutcome(file_name=file_name, state=FileState.SKIPPED)
        except LockError as e:
            _log_state(file_name, FileState.ABANDONED)
            logger.warning(
                f"Giving up on {file_name} after {self.lock_retry_attempts} attempts; "
                f"it stays in the input folder until the next poll: {e}"
            )
            return FileOutcome(file_name=file_name, state=FileState.ABANDONED, message=str(e))
        except OSError as e:
            # Unreadable, not in use
            started = self.clock()
            return self._fail(path, started.strftime(TIMESTAMP_FORMAT), started, e)

        started = self.clock()
        timestamp = started.strftime(TIMESTAMP_FORMAT)
        _log_state(file_name, FileState.PROCESSING)
        logger.info(f"Processing: {file_name}")

        try:
            parser = SalesInvoiceParser(today=started.date())
            record = parser.parse(path.read_bytes())
            document = self.transformer.transform(record)
            output_path, archive_path = self._commit(path, document, timestamp)
        except Exception as e:
            return self._fail(path, timestamp, started, e)

        _log_state(file_name, FileState.SUCCESS)
        self.stats.record_success()
        logger.info(f"✓ Successfully transformed: {file_name} -> {output_path.name}")
        logger.info(f"Running totals - {self.stats.get_summary()}")

        self._publish(FileProcessed(
            file_name=file_name,
            output_name=output_path.name,
            success_count=self.stats.success_count,
            timestamp=started,
        ))

        return FileOutcome(
            file_name=file_name,
            state=FileState.SUCCESS,
            timestamp=started,
            output_path=str(output_path),
            archive_path=str(archive_path) if archive_path else None,
        )

    def _commit(self, source: Path, document: TargetDocument,
                timestamp: str) -> Tuple[Path, Optional[Path]]:
        """
        Write the output and route the source as one step.

        The document goes to a hidden temp file that is renamed into place,
        so readers of the output folder never see a partial file. If the
        source cannot be routed afterwards the output is removed again.
        """
        output_path = self.output_dir / output_file_name(source, timestamp)
        temp_path = self.output_dir / f".{output_path.name}.tmp"

        with performance_context(f"commit {source.name}"):
            try:
                document.write(temp_path)
                os.replace(temp_path, output_path)
            except OSError as e:
                self._remove_quietly(temp_path)
                raise WriteError(f"Could not write output file {output_path.name}: {e}") from e

            try:
                archive_path = self._route_source(source, timestamp)
            except OSError as e:
                self._remove_quietly(output_path)
                raise WriteError(f"Could not archive/delete source file {source.name}: {e}") from e

        return output_path, archive_path

    def _route_source(self, source: Path, timestamp: str) -> Optional[Path]:
        if self.archive_processed_files:
            archive_path = self.archive_dir / archive_file_name(source, timestamp)
            shutil.move(str(source), str(archive_path))
            logger.debug(f"Archived original file to: {archive_path}")
            return archive_path

        source.unlink()
        logger.debug(f"Deleted original file: {source.name}")
        return None

    @staticmethod
    def _remove_quietly(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")

    def _fail(self, path: Path, timestamp: str, started: datetime,
              error: Exception) -> FileOutcome:
        file_name = path.name
        message = str(error) or type(error).__name__
        detail = ''.join(traceback.format_exception(type(error), error, error.__traceback__))

        _log_state(file_name, FileState.FAILURE)
        self.stats.record_error(file_name, message, detail)
        logger.error(f"✗ Failed to process: {file_name}: {message}")

        error_path = self._quarantine(path, timestamp, started, message)
        logger.info(f"Running totals - {self.stats.get_summary()}")

        self._publish(FileFailed(
            file_name=file_name,
            message=message,
            detail=detail,
            timestamp=started,
        ))

        return FileOutcome(
            file_name=file_name,
            state=FileState.FAILURE,
            timestamp=started,
            error_path=str(error_path) if error_path else None,
            message=message,
        )

    def _quarantine(self, path: Path, timestamp: str, started: datetime,
                    message: str) -> Optional[Path]:
        """Move the source to the error folder and write its sidecar"""
        error_path = self.error_dir / error_file_name(path, timestamp)
        details_path = self.error_dir / error_details_name(path, timestamp)
        try:
            shutil.move(str(path), str(error_path))
            details_path.write_text(
                generate_error_details(path.name, message, started),
                encoding='utf-8',
            )
        except OSError as e:
            logger.warning(f"Could not move file to error folder: {path.name}: {e}")
            return None

        logger.info(f"Moved failed file to error folder: {error_path.name}")
        return error_path
