"""Shared test fixtures: virtual clock and scripted in-memory queue."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from task_relay.relay.errors import QueueTransportError
from task_relay.relay.models import (
    CheckResponse,
    SubmitResponse,
    TaskDescriptor,
    TaskSnapshot,
    TaskStatus,
    TaskType,
)

EPOCH = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Virtual time; `sleep` advances it and yields once to the event loop."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.start = start
        self.elapsed = 0.0
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)

    def monotonic(self) -> float:
        return self.elapsed

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.elapsed += seconds
        await asyncio.sleep(0)


@dataclass
class FakeTask:
    """Remote task whose status follows `timeline` (elapsed seconds, status)."""

    task_id: str
    created_at: datetime
    timeline: list[tuple[float, TaskStatus]] = field(default_factory=list)
    output_data: dict[str, Any] | None = None
    error_message: str | None = None
    trigger_id: str = "trigger-1"
    after_reprocess: list[tuple[float, TaskStatus]] | None = None
    hidden: bool = False

    def status_at(self, elapsed: float) -> TaskStatus:
        status = TaskStatus.PENDING
        for at, next_status in self.timeline:
            if at <= elapsed:
                status = next_status
        return status

    def snapshot(self, elapsed: float) -> TaskSnapshot:
        status = self.status_at(elapsed)
        return TaskSnapshot(
            task_id=self.task_id,
            status=status,
            output_data=self.output_data if status == TaskStatus.DONE else None,
            error_message=self.error_message if status == TaskStatus.FAILED else None,
            trigger_id=self.trigger_id,
            created_at=self.created_at,
        )


class FakeQueue:
    """In-memory QueueClient driven by scripted behaviours.

    Submit behaviours: ``ok``, ``raise``, ``reject``, ``no-id``.
    Check behaviours: ``ok``, ``raise``, ``reject``.
    Both default to ``ok`` once their script is exhausted.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.tasks: dict[str, FakeTask] = {}
        self.submit_behaviors: deque[str] = deque()
        self.check_behaviors: deque[str] = deque()
        self.plans: deque[dict[str, Any]] = deque()
        self.submitted: list[TaskDescriptor] = []
        self.submit_calls = 0
        self.check_calls: list[list[str]] = []
        self.reprocess_calls: list[tuple[str, str, TaskType | None]] = []
        self.reprocess_accepts = True
        self.reprocess_raises = False
        self._counter = 0

    def add_task(self, task_id: str, **kwargs: Any) -> FakeTask:
        kwargs.setdefault("created_at", self.clock.now())
        task = FakeTask(task_id=task_id, **kwargs)
        self.tasks[task_id] = task
        return task

    async def submit(self, descriptor: TaskDescriptor) -> SubmitResponse:
        self.submit_calls += 1
        behavior = self.submit_behaviors.popleft() if self.submit_behaviors else "ok"
        if behavior == "raise":
            raise QueueTransportError("connection refused")
        if behavior == "reject":
            return SubmitResponse(success=False, error="queue is full")
        if behavior == "no-id":
            return SubmitResponse(success=True)

        self._counter += 1
        task_id = f"task-{self._counter}"
        self.submitted.append(descriptor)
        plan = self.plans.popleft() if self.plans else {}
        plan.setdefault("timeline", [(3.0, TaskStatus.PROCESSING), (6.0, TaskStatus.DONE)])
        plan.setdefault("output_data", _default_output(task_id, descriptor.task_type))
        self.add_task(task_id, **plan)
        return SubmitResponse(success=True, task_id=task_id)

    async def check(self, task_ids: list[str]) -> CheckResponse:
        self.check_calls.append(list(task_ids))
        behavior = self.check_behaviors.popleft() if self.check_behaviors else "ok"
        if behavior == "raise":
            raise QueueTransportError("HTTP 503", status_code=503)
        if behavior == "reject":
            return CheckResponse(success=False, error="temporarily unavailable")
        snapshots = tuple(
            self.tasks[task_id].snapshot(self.clock.elapsed)
            for task_id in task_ids
            if task_id in self.tasks and not self.tasks[task_id].hidden
        )
        return CheckResponse(success=True, tasks=snapshots)

    async def reprocess(
        self,
        task_id: str,
        trigger_id: str,
        *,
        task_type: TaskType | None = None,
    ) -> bool:
        self.reprocess_calls.append((task_id, trigger_id, task_type))
        if self.reprocess_raises:
            raise QueueTransportError("reprocess endpoint unreachable")
        task = self.tasks.get(task_id)
        if not self.reprocess_accepts or task is None or task.trigger_id != trigger_id:
            return False
        task.trigger_id = f"{trigger_id}-retry"
        if task.after_reprocess is not None:
            task.timeline = list(task.after_reprocess)
        return True


def _default_output(task_id: str, task_type: TaskType) -> dict[str, Any]:
    if task_type == TaskType.OCR:
        return {"text": f"text of {task_id}", "duration": 1.5}
    return {
        "generatedImages": [f"https://cdn.example.com/{task_id}.png"],
        "successCount": 1,
        "totalCount": 1,
    }


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def queue(clock: FakeClock) -> FakeQueue:
    return FakeQueue(clock)
