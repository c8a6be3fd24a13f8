"""Shared fixtures for gatewarden tests."""

from datetime import datetime, timezone

import pytest

from gatewarden.deploy.capabilities import DeployCapabilities
from gatewarden.errors import ExternalCommandError
from gatewarden.schedule.store import ScheduleStore


class FakeClock:
    """Settable UTC clock for schedule stores."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeCapabilities(DeployCapabilities):
    """Records calls; failures are switched on per capability."""

    def __init__(self):
        self.calls: list[str] = []
        self.status_output = ""
        self.heads = ["aaa111", "aaa111"]
        self.restarts = 0
        self.fail: set[str] = set()

    def _maybe_fail(self, name: str, output: str = "boom") -> None:
        if name in self.fail:
            raise ExternalCommandError(name, 1, output)

    async def working_tree_status(self) -> str:
        self.calls.append("status")
        self._maybe_fail("status")
        return self.status_output

    async def head_commit(self) -> str:
        self.calls.append("head")
        self._maybe_fail("head")
        return self.heads.pop(0) if len(self.heads) > 1 else self.heads[0]

    async def build(self) -> str:
        self.calls.append("build")
        self._maybe_fail("build", "src/index.ts(3,1): error TS2304")
        return "built"

    async def checkout(self, commit: str) -> None:
        self.calls.append(f"checkout:{commit}")
        self._maybe_fail("checkout")

    async def restart(self) -> None:
        self.calls.append("restart")
        self._maybe_fail("restart")

    async def restart_count(self) -> int:
        self.calls.append("restart_count")
        return self.restarts


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "data" / "schedules.json"


@pytest.fixture
def store(store_path, clock):
    """A store with no gateway to notify and a short lock budget."""
    return ScheduleStore(store_path, lock_timeout_s=2.0, clock=clock)


@pytest.fixture
def caps():
    return FakeCapabilities()
