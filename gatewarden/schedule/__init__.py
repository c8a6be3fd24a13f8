"""Schedule store package.

`schedule.types` is the on-disk contract (Pydantic models).
Locking and CRUD live in `schedule.lock` and `schedule.store`.
"""

from gatewarden.schedule.lock import StoreLock
from gatewarden.schedule.notify import notify_gateway
from gatewarden.schedule.store import ScheduleStore
from gatewarden.schedule.timeconv import local_to_utc
from gatewarden.schedule.types import Schedule, ScheduleHistoryEntry, ScheduleStoreData

__all__ = [
    "Schedule",
    "ScheduleHistoryEntry",
    "ScheduleStoreData",
    "ScheduleStore",
    "StoreLock",
    "local_to_utc",
    "notify_gateway",
]
