"""
Decorators for audit logging, performance monitoring, and retrying.
"""
import functools
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Tuple, Type
from contextlib import contextmanager

# Configure audit logger separately from main app logger
audit_logger = logging.getLogger('invoice_transformer.audit')
perf_logger = logging.getLogger('invoice_transformer.performance')


def _subject_of(args, kwargs) -> str:
    """Best-effort name of the invoice or file a call is about"""
    for value in list(args) + list(kwargs.values()):
        if hasattr(value, 'invoice_number'):
            return value.invoice_number or "N/A"
        if isinstance(value, Path):
            return value.name
    return "N/A"


def audit_log(func: Callable) -> Callable:
    """
    Decorator that logs entry, exit and failure of a call.

    Usage:
        @audit_log
        def process(self, path):
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        func_name = func.__qualname__
        subject = _subject_of(args, kwargs)

        audit_logger.info(
            f"CALL | {func_name} | Subject: {subject} | "
            f"Timestamp: {datetime.now().isoformat()}"
        )

        try:
            result = func(*args, **kwargs)

            if hasattr(result, 'invoice_number'):
                subject = result.invoice_number or subject
            status = getattr(result, 'state', 'PROCESSED')
            audit_logger.info(
                f"SUCCESS | {func_name} | Subject: {subject} | "
                f"Status: {getattr(status, 'value', status)}"
            )

            return result

        except Exception as e:
            audit_logger.error(
                f"FAILURE | {func_name} | Subject: {subject} | "
                f"Error: {str(e)}"
            )
            raise

    return wrapper


def measure_performance(func: Callable) -> Callable:
    """
    Decorator to measure and log function execution time.

    Usage:
        @measure_performance
        def transform(record):
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()

        try:
            result = func(*args, **kwargs)

            elapsed_ms = (time.perf_counter() - start_time) * 1000

            # Attach timing to result if possible
            if hasattr(result, 'processing_time_ms'):
                result.processing_time_ms = elapsed_ms

            perf_logger.debug(
                f"{func.__qualname__} completed in {elapsed_ms:.2f}ms"
            )

            return result

        except Exception as e:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            perf_logger.warning(
                f"{func.__qualname__} failed after {elapsed_ms:.2f}ms: {str(e)}"
            )
            raise

    return wrapper


def retry_on_failure(max_attempts: int = 3,
                     delay_seconds: float = 1.0,
                     exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                     linear_backoff: bool = False,
                     sleep: Callable[[float], None] = time.sleep,
                     on_retry: Optional[Callable[[int, BaseException], None]] = None):
    """
    Decorator for retrying operations that may fail transiently.

    Args:
        max_attempts: Maximum number of attempts
        delay_seconds: Delay between attempts (base delay with linear backoff)
        exceptions: Exception types that trigger a retry; others propagate
        linear_backoff: Wait ``attempt * delay_seconds`` instead of a fixed delay
        sleep: Sleep function, replaceable in tests
        on_retry: Called with (attempt, exception) before each wait

    Usage:
        @retry_on_failure(max_attempts=5, delay_seconds=1.0,
                          exceptions=(LockError,), linear_backoff=True)
        def check_lock(path):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)

                except exceptions as e:
                    last_exception = e
                    logging.getLogger(func.__module__).debug(
                        f"{func.__qualname__} attempt {attempt}/{max_attempts} "
                        f"failed: {str(e)}"
                    )

                    if attempt < max_attempts:
                        if on_retry:
                            on_retry(attempt, e)
                        delay = attempt * delay_seconds if linear_backoff else delay_seconds
                        sleep(delay)

            # All attempts exhausted
            logging.getLogger(func.__module__).warning(
                f"{func.__qualname__} failed after {max_attempts} attempts"
            )
            raise last_exception

        return wrapper

    return decorator


@contextmanager
def performance_context(operation_name: str):
    """
    Context manager for measuring code block performance.

    Usage:
        with performance_context("commit output"):
            commit(document)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = (time.perf_counter() - start) * 1000
        perf_logger.debug(f"{operation_name}: {elapsed:.2f}ms")
