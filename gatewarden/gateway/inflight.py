"""In-flight request accounting used to drain the gateway before a restart."""

from contextlib import contextmanager
from typing import Callable, Iterator

from gatewarden.errors import ConflictError


class InFlightTracker:
    """Counts requests currently being handled.

    ``count`` is what the deploy drain polls. While ``is_draining``
    reports True, ``admit``/``track`` reject new work.
    """

    def __init__(self, is_draining: Callable[[], bool] | None = None):
        self._count = 0
        self._is_draining = is_draining

    def count(self) -> int:
        return self._count

    def admit(self) -> None:
        if self._is_draining is not None and self._is_draining():
            raise ConflictError("Gateway is restarting for a deploy; try again shortly.")

    @contextmanager
    def track(self) -> Iterator[None]:
        self.admit()
        self._count += 1
        try:
            yield
        finally:
            self._count -= 1
