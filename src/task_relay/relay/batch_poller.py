"""Concurrent polling of a set of tasks with inline stuck-task recovery."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from task_relay.relay.client import QueueClient
from task_relay.relay.clock import Clock, SystemClock
from task_relay.relay.models import (
    ProgressCallback,
    ProgressEvent,
    TaskSnapshot,
    TaskStatus,
    TaskType,
)
from task_relay.relay.poller import (
    DEFAULT_MAX_TRANSPORT_FAILURES,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_WAIT_TIMEOUT_SECONDS,
    Poller,
    emit_progress,
)
from task_relay.relay.recovery import DEFAULT_STUCK_THRESHOLD_SECONDS, StuckTaskRecovery

logger = logging.getLogger(__name__)


class BatchPoller:
    """Waits for many tasks at once; one result per requested id."""

    def __init__(  # noqa: PLR0913
        self,
        client: QueueClient,
        *,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        wait_timeout_seconds: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
        max_transport_failures: int = DEFAULT_MAX_TRANSPORT_FAILURES,
        stuck_threshold_seconds: float = DEFAULT_STUCK_THRESHOLD_SECONDS,
        task_type: TaskType | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.client = client
        self.clock = clock or SystemClock()
        self.stuck_threshold_seconds = stuck_threshold_seconds
        self.task_type = task_type
        self.poller = Poller(
            client,
            poll_interval_seconds=poll_interval_seconds,
            wait_timeout_seconds=wait_timeout_seconds,
            max_transport_failures=max_transport_failures,
            clock=self.clock,
        )

    def new_recovery(self) -> StuckTaskRecovery:
        return StuckTaskRecovery(
            self.client,
            threshold_seconds=self.stuck_threshold_seconds,
            task_type=self.task_type,
        )

    async def wait_all_until_done(
        self,
        task_ids: Sequence[str],
        on_progress: ProgressCallback | None = None,
        *,
        recovery: StuckTaskRecovery | None = None,
    ) -> list[TaskSnapshot]:
        """Poll unresolved ids until all are terminal, the budget runs out,
        or transport failures hit the cap.

        Ids still unresolved at that point come back as failed with
        ``errorMessage == "timeout"``.
        """

        requested = list(task_ids)
        unique_ids = list(dict.fromkeys(requested))
        recovery = recovery or self.new_recovery()
        poller = self.poller
        resolved: dict[str, TaskSnapshot] = {}
        last_seen: dict[str, TaskStatus] = {}
        failures = 0
        started = self.clock.monotonic()

        if unique_ids:
            logger.info("Batch polling %s tasks", len(unique_ids))

        while self.clock.monotonic() - started < poller.wait_timeout_seconds:
            unresolved = [task_id for task_id in unique_ids if task_id not in resolved]
            if not unresolved:
                break

            await self.clock.sleep(poller.poll_interval_seconds)
            poll_round = await poller.poll_once(unresolved)
            if not poll_round.ok:
                failures += 1
                logger.warning(
                    "Batch check failed (%s/%s): %s",
                    failures,
                    poller.max_transport_failures,
                    poll_round.error,
                )
                if failures >= poller.max_transport_failures:
                    logger.error("Batch polling aborted after %s failed checks", failures)
                    break
                continue

            if poll_round.missing:
                failures += 1
                logger.warning(
                    "Check response omitted %s task(s) (%s/%s): %s",
                    len(poll_round.missing),
                    failures,
                    poller.max_transport_failures,
                    ", ".join(poll_round.missing),
                )
            else:
                failures = 0

            now = self.clock.now()
            for task_id in unresolved:
                snapshot = poll_round.tasks.get(task_id)
                if snapshot is None:
                    continue
                previous = last_seen.get(task_id)
                if previous is not None and snapshot.status.rank < previous.rank:
                    logger.debug(
                        "Ignoring stale status %s for %s (already %s)",
                        snapshot.status.value,
                        task_id,
                        previous.value,
                    )
                    continue
                last_seen[task_id] = snapshot.status
                if snapshot.status.is_terminal:
                    resolved[task_id] = snapshot
                    logger.info("Task %s finished: %s", task_id, snapshot.status.value)
                elif snapshot.status == TaskStatus.PENDING:
                    recovery.observe(snapshot, now)

            completed = sum(1 for task_id in requested if task_id in resolved)
            logger.debug("Batch progress: %s/%s", completed, len(requested))
            emit_progress(
                on_progress,
                ProgressEvent(stage="processing", completed=completed, total=len(requested)),
            )

            if failures >= poller.max_transport_failures:
                logger.error("Batch polling aborted: tasks repeatedly missing from checks")
                break

        # reprocess requests issued in the last round must be sent before callers close the client
        await recovery.drain()

        unresolved_count = sum(1 for task_id in unique_ids if task_id not in resolved)
        if unresolved_count:
            logger.error("%s task(s) unresolved, reporting as timeout", unresolved_count)
        return [resolved.get(task_id) or TaskSnapshot.timed_out(task_id) for task_id in requested]
