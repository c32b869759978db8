import contextlib
import logging
import time
from typing import Generator, Optional


@contextlib.contextmanager
def debug_timing(
    span_name: str, log: Optional[logging.Logger] = None
) -> Generator[None, None, None]:
    """Log the wall time spent in this context at debug level.

    The time is logged even when the block raises, marked as failed.
    """
    log = log or logging.getLogger()
    start_time = time.perf_counter()
    failed = True
    try:
        yield
        failed = False
    finally:
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        log.debug(f"{span_name}: {elapsed_ms:.0f} ms{' (failed)' if failed else ''}")
