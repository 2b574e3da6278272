"""
Whole-pass mutual exclusion between invocations.

A timer-driven run and a manual run must never mutate state at the same time.
The lock is a file created with O_EXCL; a holder that died without releasing
it is ignored once the file is older than `stale_seconds`.
"""
import logging
import os
import time
from pathlib import Path
from typing import Optional

from .errors import LockContention


logger = logging.getLogger(__name__)


class PipelineLock:
    """
    Usage:
        with PipelineLock(path, timeout_seconds=5):
            ...  # one pipeline pass

    Raises LockContention if the lock cannot be taken within the timeout.
    """

    DEFAULT_TIMEOUT_SECONDS = 5.0
    DEFAULT_STALE_SECONDS = 900.0
    POLL_INTERVAL_SECONDS = 0.1

    def __init__(
        self,
        path: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        stale_seconds: float = DEFAULT_STALE_SECONDS,
    ):
        self.path = Path(path)
        self.timeout_seconds = timeout_seconds
        self.stale_seconds = stale_seconds
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _try_create(self) -> bool:
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            f.write(f"{os.getpid()} {time.time():.0f}\n")
        return True

    def _lock_age(self) -> Optional[float]:
        try:
            return time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return None

    def _break_if_stale(self) -> None:
        age = self._lock_age()
        if age is None or age <= self.stale_seconds:
            return

        # Claim the file by renaming it; only one contender can win the rename
        claimed = self.path.with_name(f"{self.path.name}.{os.getpid()}.stale")
        try:
            os.rename(self.path, claimed)
        except FileNotFoundError:
            return

        claimed_age = time.time() - claimed.stat().st_mtime
        if claimed_age <= self.stale_seconds:
            # A fresh lock was taken between the age check and the rename: put it back
            try:
                os.link(claimed, self.path)
            except FileExistsError:
                logger.warning(f"Pipeline lock {self.path} was re-created while restoring it")
            claimed.unlink()
            return

        logger.warning(f"Breaking stale pipeline lock {self.path} ({claimed_age:.0f}s old)")
        claimed.unlink()

    def refresh(self) -> None:
        """Touch the held lock so a long pass is never mistaken for a dead holder."""
        if not self._held:
            return
        try:
            os.utime(self.path, None)
        except FileNotFoundError:
            logger.warning(f"Pipeline lock {self.path} vanished while held")

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        start = time.monotonic()
        while True:
            self._break_if_stale()
            if self._try_create():
                self._held = True
                logger.debug(f"Acquired pipeline lock {self.path}")
                return
            waited = time.monotonic() - start
            if waited >= self.timeout_seconds:
                raise LockContention(str(self.path), waited)
            time.sleep(min(self.POLL_INTERVAL_SECONDS, self.timeout_seconds - waited))

    def release(self) -> None:
        if not self._held:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            logger.warning(f"Pipeline lock {self.path} vanished before release")
        self._held = False
        logger.debug(f"Released pipeline lock {self.path}")

    def __enter__(self) -> "PipelineLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
