"""Tests for the file-backed schedule store."""

import json
import threading
from datetime import timedelta
from pathlib import Path

import pytest

from gatewarden.errors import ConflictError, ScheduleNotFoundError, ScheduleValidationError
from gatewarden.schedule.store import ScheduleStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _record(schedule_id: int = 1, **overrides) -> dict:
    """A serialised schedule as it appears on disk."""
    record = {
        "id": schedule_id,
        "type": "cron",
        "jobType": "prompt",
        "cronExpression": "0 9 * * *",
        "task": "Morning summary",
        "output": "telegram",
        "status": "active",
        "createdAt": "2025-02-01T08:00:00.000Z",
        "nextRun": "2025-03-02T08:00:00.000Z",
        "userId": "42",
        "history": [],
    }
    record.update(overrides)
    return record


def _write_store(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))


def _read_store(path: Path) -> dict:
    return json.loads(path.read_text())


def _cron(store: ScheduleStore, task: str = "Check disk", user: str = "42", **kwargs):
    return store.create(type="cron", task=task, user_id=user, cron="0 9 * * 1-5", **kwargs)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestCreate:
    def test_create_cron(self, store, store_path):
        schedule = _cron(store, job_type="shell", output="silent", name="disk")

        assert schedule.id == 1
        assert schedule.status == "active"
        assert schedule.cron_expression == "0 9 * * 1-5"
        assert schedule.scheduled_time is None
        # Saturday 2025-03-01 -> Monday 09:00 Berlin (CET)
        assert schedule.next_run == "2025-03-03T08:00:00.000Z"
        assert schedule.created_at == "2025-03-01T08:00:00.000Z"

        disk = _read_store(store_path)
        assert disk["nextId"] == 2
        saved = disk["schedules"][0]
        assert saved["jobType"] == "shell"
        assert saved["output"] == "silent"
        assert saved["userId"] == "42"
        assert "scheduledTime" not in saved

    def test_create_once_uses_time_as_next_run(self, store):
        schedule = store.create(type="once", task="Call mum", user_id="42", time="2025-03-02 09:00")
        assert schedule.scheduled_time == "2025-03-02T08:00:00.000Z"
        assert schedule.next_run == schedule.scheduled_time
        assert schedule.cron_expression is None
        assert schedule.to_dict()["scheduledTime"] == "2025-03-02T08:00:00.000Z"

    def test_defaults(self, store):
        schedule = _cron(store)
        assert schedule.job_type == "prompt"
        assert schedule.output == "telegram"
        assert schedule.name is None
        assert schedule.history == []

    def test_ids_are_sequential(self, store):
        assert [_cron(store).id for _ in range(3)] == [1, 2, 3]

    def test_invalid_cron_is_rejected_before_writing(self, store, store_path):
        with pytest.raises(ScheduleValidationError, match="Invalid cron expression"):
            store.create(type="cron", task="x", user_id="42", cron="not a cron")
        assert not store_path.exists()

    def test_dst_gap_time_is_rejected(self, store, store_path):
        with pytest.raises(ScheduleValidationError, match="does not exist"):
            store.create(type="once", task="x", user_id="42", time="2025-03-30 02:30")
        assert not store_path.exists()

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"type": "weekly", "cron": "0 9 * * *"}, "cron"),
            ({"type": "cron", "job_type": "binary", "cron": "0 9 * * *"}, "Job type"),
            ({"type": "cron", "task": "   ", "cron": "0 9 * * *"}, "Task"),
            ({"type": "cron", "user_id": "", "cron": "0 9 * * *"}, "User"),
            ({"type": "cron"}, "cron expression is required"),
            ({"type": "once"}, "time is required"),
        ],
    )
    def test_validation_errors(self, store, kwargs, message):
        args = {"task": "Check disk", "user_id": "42", **kwargs}
        with pytest.raises(ScheduleValidationError, match=message):
            store.create(**args)

    def test_next_id_stays_above_manually_inserted_ids(self, store, store_path):
        _write_store(store_path, {"schedules": [_record(99)], "nextId": 5})
        assert _cron(store).id >= 100
        assert _read_store(store_path)["nextId"] > 100

    def test_persisted_next_id_is_kept_when_higher(self, store, store_path):
        _write_store(store_path, {"schedules": [_record(3, status="cancelled")], "nextId": 10})
        assert _cron(store).id == 10

    def test_ids_never_reused_after_cancel(self, store):
        first = _cron(store)
        store.cancel(first.id)
        assert _cron(store).id == 2


class TestLoad:
    def test_missing_file_is_empty(self, store):
        data = store.load()
        assert data.schedules == []
        assert data.next_id == 1

    def test_corrupt_file_is_treated_as_empty(self, store, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json")
        assert store.load().schedules == []
        assert _cron(store).id == 1

    def test_non_object_root_is_empty(self, store, store_path):
        _write_store(store_path, [1, 2, 3])
        assert store.load().schedules == []

    def test_malformed_records_are_dropped(self, store_path, clock):
        dropped = []
        store = ScheduleStore(store_path, clock=clock, on_dropped=dropped.append)
        _write_store(
            store_path,
            {
                "schedules": [
                    _record(1),
                    _record(0),
                    _record(2, type="weekly"),
                    _record(3, task=""),
                    _record(4, userId="  "),
                    _record(5, status="paused"),
                    _record(6, jobType="binary"),
                    {"id": "seven"},
                    "garbage",
                    _record(8),
                    _record(True),
                    _record("1"),
                    _record(1.0),
                    _record(9, cronExpression=None),
                    _record(10, type="once", cronExpression=None),
                ],
                "nextId": 11,
            },
        )
        data = store.load()
        assert [s.id for s in data.schedules] == [1, 8]
        assert dropped == [13]

    def test_ids_are_not_coerced_into_duplicates(self, store, store_path):
        _write_store(
            store_path,
            {"schedules": [_record(1), _record("1", task="Shadow"), _record(True)], "nextId": 2},
        )
        store.cancel(1)
        data = store.load()
        assert [(s.id, s.task, s.status) for s in data.schedules] == [
            (1, "Morning summary", "cancelled")
        ]

    def test_missing_enums_take_defaults(self, store, store_path):
        record = _record(1)
        del record["jobType"]
        del record["status"]
        del record["output"]
        _write_store(store_path, {"schedules": [record], "nextId": 2})

        schedule = store.get(1)
        assert schedule.job_type == "prompt"
        assert schedule.status == "active"
        assert schedule.output == "telegram"

    def test_invalid_history_entries_are_dropped_individually(self, store, store_path):
        history = [
            {"timestamp": "2025-03-01T08:00:00.000Z", "result": "ok", "duration": 120, "success": True},
            {"timestamp": "2025-03-01T09:00:00.000Z", "result": "ok", "duration": "fast", "success": True},
            {"timestamp": "2025-03-01T10:00:00.000Z", "result": "ok"},
        ]
        _write_store(store_path, {"schedules": [_record(1, history=history)], "nextId": 2})
        schedule = store.get(1)
        assert len(schedule.history) == 1
        assert schedule.history[0].duration == 120

    def test_wrong_type_field_is_cleared(self, store, store_path):
        _write_store(
            store_path,
            {"schedules": [_record(1, scheduledTime="2025-03-02T08:00:00.000Z")], "nextId": 2},
        )
        assert store.get(1).scheduled_time is None

    def test_unknown_keys_round_trip(self, store, store_path):
        _write_store(store_path, {"schedules": [_record(1, leaseUntil="x")], "nextId": 2})
        store.update(1, name="kept")
        assert _read_store(store_path)["schedules"][0]["leaseUntil"] == "x"

    def test_reads_do_not_write(self, store, store_path):
        _write_store(store_path, {"schedules": [_record(1)], "nextId": 2})
        before = store_path.read_text()
        store.list_schedules()
        store.get(1)
        store.history(1)
        assert store_path.read_text() == before


class TestList:
    def test_active_first_then_newest(self, store, clock):
        a = _cron(store, task="a")
        clock.now += timedelta(minutes=1)
        b = _cron(store, task="b")
        clock.now += timedelta(minutes=1)
        c = _cron(store, task="c")
        store.cancel(c.id)

        assert [s.id for s in store.list_schedules()] == [b.id, a.id, c.id]

    def test_active_only(self, store):
        a = _cron(store)
        b = _cron(store)
        store.cancel(a.id)
        assert [s.id for s in store.list_schedules(active_only=True)] == [b.id]

    def test_filter_by_user(self, store):
        _cron(store, user="42")
        other = _cron(store, user="7")
        assert [s.id for s in store.list_schedules(user_id="7")] == [other.id]


class TestCancel:
    def test_cancel_active(self, store, store_path):
        schedule = _cron(store)
        cancelled = store.cancel(schedule.id)
        assert cancelled.status == "cancelled"
        assert cancelled.next_run is None
        saved = _read_store(store_path)["schedules"][0]
        assert saved["status"] == "cancelled"
        assert saved["nextRun"] is None

    def test_cancel_twice_conflicts(self, store):
        schedule = _cron(store)
        store.cancel(schedule.id)
        with pytest.raises(ConflictError, match="already cancelled"):
            store.cancel(schedule.id)

    def test_cancel_missing(self, store):
        with pytest.raises(ScheduleNotFoundError, match="#404"):
            store.cancel(404)

    def test_cancel_checks_owner(self, store):
        schedule = _cron(store, user="42")
        with pytest.raises(ScheduleNotFoundError):
            store.cancel(schedule.id, user_id="7")
        assert store.get(schedule.id).status == "active"

    def test_concurrent_cancels_transition_once(self, store_path, clock):
        ScheduleStore(store_path, clock=clock).create(
            type="cron", task="x", user_id="42", cron="0 9 * * *"
        )
        outcomes = []
        barrier = threading.Barrier(2)

        def worker():
            # Separate instances, as separate processes would have
            own = ScheduleStore(store_path, clock=clock)
            barrier.wait()
            try:
                own.cancel(1)
                outcomes.append("cancelled")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["cancelled", "conflict"]
        assert _read_store(store_path)["schedules"][0]["status"] == "cancelled"


class TestUpdate:
    def test_partial_update(self, store):
        schedule = _cron(store, name="old")
        updated = store.update(schedule.id, name="new", output="file:/tmp/out.log", job_type="shell")
        assert updated.name == "new"
        assert updated.output == "file:/tmp/out.log"
        assert updated.job_type == "shell"
        assert updated.task == schedule.task
        assert updated.cron_expression == schedule.cron_expression

    def test_cron_change_recomputes_next_run(self, store):
        schedule = _cron(store)
        updated = store.update(schedule.id, cron="30 10 * * *")
        assert updated.cron_expression == "30 10 * * *"
        # 10:30 Berlin on 2025-03-01 is still ahead of 08:00Z
        assert updated.next_run == "2025-03-01T09:30:00.000Z"

    def test_time_change_recomputes_next_run(self, store):
        schedule = store.create(type="once", task="x", user_id="42", time="2025-03-02 09:00")
        updated = store.update(schedule.id, time="2025-07-01 12:00")
        assert updated.scheduled_time == "2025-07-01T10:00:00.000Z"
        assert updated.next_run == "2025-07-01T10:00:00.000Z"

    def test_cron_on_once_schedule_conflicts(self, store):
        schedule = store.create(type="once", task="x", user_id="42", time="2025-03-02 09:00")
        with pytest.raises(ConflictError, match="one-time"):
            store.update(schedule.id, cron="0 9 * * *")

    def test_time_on_cron_schedule_conflicts(self, store):
        schedule = _cron(store)
        with pytest.raises(ConflictError, match="cron schedule"):
            store.update(schedule.id, time="2025-03-02 09:00")

    def test_cancelled_schedule_keeps_no_next_run(self, store):
        schedule = _cron(store)
        store.cancel(schedule.id)
        updated = store.update(schedule.id, cron="0 10 * * *")
        assert updated.cron_expression == "0 10 * * *"
        assert updated.next_run is None

    def test_invalid_values_rejected(self, store):
        schedule = _cron(store)
        with pytest.raises(ScheduleValidationError):
            store.update(schedule.id, cron="61 * * * *")
        with pytest.raises(ScheduleValidationError):
            store.update(schedule.id, job_type="binary")
        with pytest.raises(ScheduleValidationError):
            store.update(schedule.id, task="  ")

    def test_missing(self, store):
        with pytest.raises(ScheduleNotFoundError):
            store.update(5, name="x")


class TestHistory:
    def test_record_run_and_history_newest_first(self, store, clock):
        schedule = _cron(store)
        for i in range(3):
            clock.now += timedelta(hours=1)
            store.record_run(schedule.id, result=f"run {i}", duration_ms=100 + i, success=i != 1)

        found, entries = store.history(schedule.id, limit=2)
        assert found.id == schedule.id
        assert [e.result for e in entries] == ["run 2", "run 1"]
        assert entries[1].success is False
        assert found.last_run == "2025-03-01T11:00:00.000Z"

    def test_history_is_capped(self, store_path, clock):
        store = ScheduleStore(store_path, clock=clock, max_history=5)
        schedule = _cron(store)
        for i in range(8):
            store.record_run(schedule.id, result=str(i), duration_ms=1, success=True)
        assert [e.result for e in store.get(schedule.id).history] == ["3", "4", "5", "6", "7"]

    def test_record_run_can_complete_once_schedule(self, store):
        schedule = store.create(type="once", task="x", user_id="42", time="2025-03-02 09:00")
        done = store.record_run(schedule.id, result="ok", duration_ms=5, success=True, status="completed")
        assert done.status == "completed"
        assert done.next_run is None

    def test_record_run_rejects_unknown_status(self, store):
        schedule = _cron(store)
        with pytest.raises(ScheduleValidationError):
            store.record_run(schedule.id, result="ok", duration_ms=5, success=True, status="paused")

    def test_history_limit_must_be_positive(self, store):
        schedule = _cron(store)
        with pytest.raises(ScheduleValidationError):
            store.history(schedule.id, limit=0)

    def test_history_missing(self, store):
        with pytest.raises(ScheduleNotFoundError):
            store.history(3)


class TestReloadNotification:
    def test_mutations_signal_gateway(self, store_path, clock, monkeypatch):
        calls = []
        monkeypatch.setattr(
            "gatewarden.schedule.store.notify_gateway",
            lambda pid_file, sig: calls.append((pid_file, sig)),
        )
        pid_file = store_path.parent / "gateway.pid"
        store = ScheduleStore(store_path, clock=clock, pid_file=pid_file)

        schedule = _cron(store)
        store.update(schedule.id, name="x")
        store.list_schedules()
        store.cancel(schedule.id)

        assert calls == [(pid_file, "SIGUSR2")] * 3

    def test_failed_mutation_does_not_signal(self, store_path, clock, monkeypatch):
        calls = []
        monkeypatch.setattr(
            "gatewarden.schedule.store.notify_gateway",
            lambda pid_file, sig: calls.append(pid_file),
        )
        store = ScheduleStore(store_path, clock=clock, pid_file=store_path.parent / "gateway.pid")
        with pytest.raises(ScheduleNotFoundError):
            store.cancel(1)
        assert calls == []

    def test_without_pid_file_never_signals(self, store, monkeypatch):
        monkeypatch.setattr(
            "gatewarden.schedule.store.notify_gateway",
            lambda *a: pytest.fail("should not signal"),
        )
        _cron(store)
