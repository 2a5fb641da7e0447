"""
Advisory cross-process lock on the binary cache directory.

One lock file guards the whole cache directory (not one per version), so
concurrent installs of different versions into the same directory are
serialized.
"""

import contextlib
import fcntl
import logging
import time
from pathlib import Path
from typing import Iterator

from tfrunner.errors import InstallError, LockTimeoutError

logger = logging.getLogger(__name__)


LOCK_FILE_NAME = ".terraform-init.lock"
DEFAULT_LOCK_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 0.5


def lock_path_for(cache_dir: Path) -> Path:
    return Path(cache_dir) / LOCK_FILE_NAME


@contextlib.contextmanager
def cache_dir_lock(
    cache_dir: Path,
    timeout_seconds: float = DEFAULT_LOCK_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> Iterator[Path]:
    """
    Hold the cache directory lock for the duration of the block.

    Non-blocking lock attempts are repeated every poll_interval seconds
    until the lock is acquired or timeout_seconds have elapsed. The lock is
    released and the file handle closed on every exit path.

    Args:
        cache_dir: Cache directory (created if missing)
        timeout_seconds: Maximum time to wait for the lock
        poll_interval: Delay between attempts

    Yields:
        Path of the lock file

    Raises:
        InstallError: If the cache directory or lock file cannot be opened
        LockTimeoutError: If the lock is not acquired in time
    """
    lock_path = lock_path_for(cache_dir)

    log_extra = {"event": "cache_lock", "metadata": {"cache_lock": str(lock_path)}}
    logger.info("attempting to acquire cache lock", extra=log_extra)

    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        # Append mode creates the file without truncating; content stays empty.
        fh = lock_path.open("a")
    except OSError as e:
        raise InstallError(f"failed to open cache lock {lock_path}: {e}") from e

    try:
        deadline = time.monotonic() + timeout_seconds
        while True:
            try:
                fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise LockTimeoutError(str(lock_path), timeout_seconds)
                time.sleep(min(poll_interval, remaining))
    except BaseException:
        fh.close()
        raise

    logger.info("acquired cache lock", extra=log_extra)
    try:
        yield lock_path
    finally:
        try:
            fcntl.flock(fh, fcntl.LOCK_UN)
        finally:
            fh.close()
        logger.info("released cache lock", extra=log_extra)
