from __future__ import annotations

from datetime import timedelta

import allure
import pytest

from task_relay.relay.models import TaskSnapshot, TaskStatus, TaskType
from task_relay.relay.recovery import StuckTaskRecovery

pytestmark = [
    allure.epic("Task Relay"),
    allure.feature("Stuck Task Recovery"),
]


def _pending(queue, clock, task_id: str = "t-1", **kwargs):
    task = queue.add_task(task_id, **kwargs)
    return task.snapshot(clock.elapsed)


def test_is_stuck_needs_pending_status_trigger_and_age(queue, clock) -> None:
    recovery = StuckTaskRecovery(queue, threshold_seconds=15)
    snapshot = _pending(queue, clock)

    assert not recovery.is_stuck(snapshot, clock.now() + timedelta(seconds=15))
    assert recovery.is_stuck(snapshot, clock.now() + timedelta(seconds=15.5))

    processing = queue.add_task("t-2", timeline=[(0.0, TaskStatus.PROCESSING)]).snapshot(0.0)
    assert not recovery.is_stuck(processing, clock.now() + timedelta(hours=1))

    untriggered = TaskSnapshot(task_id="t-3", status=TaskStatus.PENDING, created_at=clock.now())
    assert not recovery.is_stuck(untriggered, clock.now() + timedelta(hours=1))
    assert not recovery.observe(untriggered, clock.now() + timedelta(hours=1))


@pytest.mark.asyncio
async def test_observe_retriggers_once_per_session(queue, clock) -> None:
    recovery = StuckTaskRecovery(queue, threshold_seconds=15, task_type=TaskType.OCR)
    snapshot = _pending(queue, clock)
    later = clock.now() + timedelta(seconds=20)

    issued = [recovery.observe(snapshot, later) for _ in range(10)]
    await recovery.drain()

    assert issued == [True] + [False] * 9
    assert queue.reprocess_calls == [("t-1", "trigger-1", TaskType.OCR)]
    assert recovery.accepted == {"t-1"}
    assert recovery.retriggered == frozenset({"t-1"})


@pytest.mark.asyncio
async def test_new_session_may_retrigger_same_task(queue, clock) -> None:
    queue.reprocess_accepts = False
    snapshot = _pending(queue, clock)
    later = clock.now() + timedelta(seconds=20)

    first = StuckTaskRecovery(queue)
    first.observe(snapshot, later)
    await first.drain()
    second = StuckTaskRecovery(queue)
    second.observe(snapshot, later)
    await second.drain()

    assert len(queue.reprocess_calls) == 2
    assert first.rejected == {"t-1"}
    assert second.rejected == {"t-1"}


@pytest.mark.asyncio
async def test_stale_trigger_id_is_rejected_by_queue(queue, clock) -> None:
    snapshot = _pending(queue, clock)
    queue.tasks["t-1"].trigger_id = "trigger-2"
    recovery = StuckTaskRecovery(queue)

    recovery.observe(snapshot, clock.now() + timedelta(seconds=20))
    await recovery.drain()

    assert recovery.rejected == {"t-1"}
    assert recovery.accepted == set()


@pytest.mark.asyncio
async def test_reprocess_failure_is_recorded_not_raised(queue, clock) -> None:
    queue.reprocess_raises = True
    recovery = StuckTaskRecovery(queue)

    assert recovery.observe(_pending(queue, clock), clock.now() + timedelta(seconds=20))
    await recovery.drain()

    assert "unreachable" in recovery.failures["t-1"]
    assert recovery.accepted == set()


@pytest.mark.asyncio
async def test_pending_task_without_created_at_is_never_retriggered(queue, clock) -> None:
    recovery = StuckTaskRecovery(queue, threshold_seconds=15)
    snapshot = TaskSnapshot(task_id="t-1", status=TaskStatus.PENDING, trigger_id="trigger-1")

    assert not recovery.observe(snapshot, clock.now() + timedelta(hours=1))
    await recovery.drain()

    assert queue.reprocess_calls == []
    assert recovery.retriggered == frozenset()
