"""Single-task polling against the remote queue."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from task_relay.relay.client import QueueClient
from task_relay.relay.clock import Clock, SystemClock
from task_relay.relay.errors import RelayError
from task_relay.relay.models import ProgressCallback, ProgressEvent, TaskSnapshot
from task_relay.relay.recovery import StuckTaskRecovery

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_WAIT_TIMEOUT_SECONDS = 600.0
DEFAULT_MAX_TRANSPORT_FAILURES = 3


@dataclass(slots=True)
class PollRound:
    """Outcome of one status-check round trip."""

    ok: bool
    tasks: dict[str, TaskSnapshot] = field(default_factory=dict)
    missing: tuple[str, ...] = ()
    error: str | None = None

    @property
    def clean(self) -> bool:
        """Transport succeeded and every requested id came back."""

        return self.ok and not self.missing


def emit_progress(callback: ProgressCallback | None, event: ProgressEvent) -> None:
    """Deliver a progress event; callback errors never reach the polling loop."""

    if callback is None:
        return
    try:
        callback(event)
    except Exception:  # noqa: BLE001
        logger.exception("Progress callback raised for %s", event)


class Poller:
    """Status checks with interval, global budget and transport-failure cap."""

    def __init__(
        self,
        client: QueueClient,
        *,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        wait_timeout_seconds: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
        max_transport_failures: int = DEFAULT_MAX_TRANSPORT_FAILURES,
        clock: Clock | None = None,
    ) -> None:
        self.client = client
        self.poll_interval_seconds = poll_interval_seconds
        self.wait_timeout_seconds = wait_timeout_seconds
        self.max_transport_failures = max_transport_failures
        self.clock = clock or SystemClock()

    async def poll_once(self, task_ids: list[str]) -> PollRound:
        """One `check` call; unknown ids are reported as missing."""

        try:
            response = await self.client.check(list(task_ids))
        except RelayError as exc:
            return PollRound(ok=False, error=str(exc) or "network error")
        if not response.success:
            return PollRound(ok=False, error=response.error or "check rejected")

        requested = set(task_ids)
        tasks = {
            snapshot.task_id: snapshot
            for snapshot in response.tasks
            if snapshot.task_id in requested
        }
        missing = tuple(dict.fromkeys(task_id for task_id in task_ids if task_id not in tasks))
        return PollRound(ok=True, tasks=tasks, missing=missing)

    async def wait_until_done(
        self,
        task_id: str,
        on_progress: ProgressCallback | None = None,
        recovery: StuckTaskRecovery | None = None,
    ) -> TaskSnapshot | None:
        """Poll one task until done/failed.

        Returns None when the wait budget runs out or the transport-failure cap
        is hit; callers must treat that as unknown, not success.
        """

        started = self.clock.monotonic()
        failures = 0
        logger.info("Polling task %s", task_id)

        while self.clock.monotonic() - started < self.wait_timeout_seconds:
            await self.clock.sleep(self.poll_interval_seconds)

            poll_round = await self.poll_once([task_id])
            snapshot = poll_round.tasks.get(task_id)
            if snapshot is None:
                failures += 1
                reason = poll_round.error or "task missing from check response"
                logger.warning(
                    "Check for %s failed (%s/%s): %s",
                    task_id,
                    failures,
                    self.max_transport_failures,
                    reason,
                )
                if failures >= self.max_transport_failures:
                    logger.error("Giving up on %s after %s failed checks", task_id, failures)
                    return None
                continue

            failures = 0
            logger.debug("Task %s status: %s", task_id, snapshot.status.value)
            emit_progress(
                on_progress,
                ProgressEvent(
                    stage="status",
                    completed=1 if snapshot.status.is_terminal else 0,
                    total=1,
                    status=snapshot.status,
                ),
            )
            if snapshot.status.is_terminal:
                logger.info("Task %s finished: %s", task_id, snapshot.status.value)
                return snapshot
            if recovery is not None:
                recovery.observe(snapshot, self.clock.now())

        logger.error("Polling %s timed out after %.0fs", task_id, self.wait_timeout_seconds)
        return None
