"""Cross-process advisory lock on the schedule store.

Every process that touches schedules.json (the gateway and any number of CLI
invocations) must take this lock. The marker file's content is irrelevant;
only its existence and mtime are used.
"""

import os
import time
from pathlib import Path
from typing import Callable

from loguru import logger

from gatewarden.errors import LockTimeoutError
from gatewarden.utils.helpers import ensure_dir

DEFAULT_TIMEOUT_S = 5.0
DEFAULT_STALE_S = 30.0
DEFAULT_RETRY_S = 0.025


class StoreLock:
    """
    Exclusive-create marker file lock with stale takeover and bounded wait.

    Acquire: create the marker with O_CREAT|O_EXCL. If it exists and is older
    than ``stale_s`` it is presumed abandoned by a crashed holder, removed, and
    acquisition is retried at once. Otherwise poll every ``retry_s`` until
    ``timeout_s`` has elapsed, then raise LockTimeoutError.

    Release: delete the marker, tolerating its prior removal.
    """

    def __init__(
        self,
        path: Path,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        stale_s: float = DEFAULT_STALE_S,
        retry_s: float = DEFAULT_RETRY_S,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.path = Path(path)
        self.timeout_s = timeout_s
        self.stale_s = stale_s
        self.retry_s = retry_s
        self._clock = clock
        self._sleep = sleep
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            raise RuntimeError(f"Lock {self.path} is already held by this instance")

        ensure_dir(self.path.parent)
        started = self._clock()
        stale_warned = False

        while True:
            try:
                self._fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
                os.write(self._fd, str(os.getpid()).encode())
                return
            except FileExistsError:
                pass

            try:
                age = self._clock() - os.stat(self.path).st_mtime
                if age > self.stale_s:
                    os.unlink(self.path)
                    if not stale_warned:
                        logger.warning(f"Removed stale schedule store lock (age {age:.1f}s)")
                        stale_warned = True
                    continue
            except FileNotFoundError:
                # Released between our create attempt and stat; retry now
                continue

            if self._clock() - started >= self.timeout_s:
                raise LockTimeoutError(
                    f"Timed out acquiring schedule store lock after {int(self.timeout_s * 1000)}ms"
                )
            self._sleep(self.retry_s)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            os.close(self._fd)
        finally:
            self._fd = None
            try:
                os.unlink(self.path)
            except FileNotFoundError:
                pass

    def __enter__(self) -> "StoreLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
