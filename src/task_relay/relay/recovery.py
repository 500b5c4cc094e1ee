"""Recovery of tasks stalled in the pending state.

One `StuckTaskRecovery` belongs to one wait call. It re-triggers each stuck
task at most once for that call by sending the task's current trigger id back
to the queue; the queue only restarts the task when that id still matches,
so concurrent recoveries of the same task cannot both run it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from task_relay.relay.client import QueueClient
from task_relay.relay.errors import RelayError
from task_relay.relay.models import TaskSnapshot, TaskStatus, TaskType

logger = logging.getLogger(__name__)

DEFAULT_STUCK_THRESHOLD_SECONDS = 15.0


class StuckTaskRecovery:
    """Fire-and-forget reprocess requests for stuck pending tasks."""

    def __init__(
        self,
        client: QueueClient,
        *,
        threshold_seconds: float = DEFAULT_STUCK_THRESHOLD_SECONDS,
        task_type: TaskType | None = None,
    ) -> None:
        self.client = client
        self.threshold = timedelta(seconds=threshold_seconds)
        self.task_type = task_type
        self.accepted: set[str] = set()
        self.rejected: set[str] = set()
        self.failures: dict[str, str] = {}
        self._retriggered: set[str] = set()
        self._in_flight: set[asyncio.Task[None]] = set()

    @property
    def retriggered(self) -> frozenset[str]:
        return frozenset(self._retriggered)

    def is_stuck(self, snapshot: TaskSnapshot, now: datetime) -> bool:
        return self._stuck_trigger(snapshot, now) is not None

    def observe(self, snapshot: TaskSnapshot, now: datetime) -> bool:
        """Issue a reprocess request if the snapshot is stuck; True when issued."""

        trigger_id = self._stuck_trigger(snapshot, now)
        if trigger_id is None or snapshot.task_id in self._retriggered:
            return False

        self._retriggered.add(snapshot.task_id)
        logger.warning(
            "Task %s pending longer than %.1fs, requesting reprocess",
            snapshot.task_id,
            self.threshold.total_seconds(),
        )
        request = asyncio.create_task(self._reprocess(snapshot.task_id, trigger_id))
        self._in_flight.add(request)
        request.add_done_callback(self._in_flight.discard)
        return True

    async def drain(self) -> None:
        """Wait for in-flight reprocess requests issued so far."""

        if self._in_flight:
            await asyncio.gather(*tuple(self._in_flight), return_exceptions=True)

    async def _reprocess(self, task_id: str, trigger_id: str) -> None:
        try:
            accepted = await self.client.reprocess(
                task_id,
                trigger_id,
                task_type=self.task_type,
            )
        except RelayError as exc:
            self.failures[task_id] = str(exc)
            logger.error("Reprocess request for %s failed: %s", task_id, exc)
            return
        except Exception as exc:  # noqa: BLE001
            self.failures[task_id] = f"unexpected error: {exc}"
            logger.exception("Reprocess request for %s raised unexpectedly", task_id)
            return

        if accepted:
            self.accepted.add(task_id)
            logger.info("Reprocess accepted for %s", task_id)
        else:
            self.rejected.add(task_id)
            logger.info("Reprocess rejected for %s (trigger id no longer current)", task_id)

    def _stuck_trigger(self, snapshot: TaskSnapshot, now: datetime) -> str | None:
        """Trigger id to send back when the snapshot has been pending too long."""

        if snapshot.status != TaskStatus.PENDING:
            return None
        if snapshot.trigger_id is None or snapshot.created_at is None:
            return None
        if now - snapshot.created_at <= self.threshold:
            return None
        return snapshot.trigger_id
