"""Task submission with retry budget and jittered exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Sequence

from task_relay.relay.client import QueueClient
from task_relay.relay.clock import Clock, SystemClock
from task_relay.relay.errors import RelayError
from task_relay.relay.models import SubmitOutcome, TaskDescriptor

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_SECONDS = 1.0
DEFAULT_BACKOFF_JITTER_SECONDS = 1.0


class TaskSubmitter:
    """Submits job descriptors; one remote task per successful call."""

    def __init__(
        self,
        client: QueueClient,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS,
        backoff_jitter_seconds: float = DEFAULT_BACKOFF_JITTER_SECONDS,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.client = client
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_jitter_seconds = backoff_jitter_seconds
        self.clock = clock or SystemClock()
        self._random = rng or random.Random()  # noqa: S311

    async def submit(self, descriptor: TaskDescriptor) -> SubmitOutcome:
        """Submit one descriptor, retrying transport errors and rejections."""

        task_type = descriptor.task_type.value
        last_error = "unknown error"
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.client.submit(descriptor)
            except RelayError as exc:
                last_error = str(exc) or "network error"
                logger.warning(
                    "Submit %s failed (attempt %s/%s): %s",
                    task_type,
                    attempt,
                    self.max_attempts,
                    last_error,
                )
            else:
                if response.success and response.task_id:
                    logger.info("Submitted %s task %s", task_type, response.task_id)
                    return SubmitOutcome.succeeded(response.task_id, attempts=attempt)
                if response.success:
                    # Accepted without an id: retrying cannot fix the response contract.
                    logger.error("Submit %s succeeded without a task id", task_type)
                    return SubmitOutcome.failed(
                        "submission accepted without a task id",
                        attempts=attempt,
                    )
                last_error = response.error or "submission rejected"
                logger.warning(
                    "Submit %s rejected (attempt %s/%s): %s",
                    task_type,
                    attempt,
                    self.max_attempts,
                    last_error,
                )

            if attempt < self.max_attempts:
                delay_seconds = self.compute_backoff(attempt=attempt)
                logger.info("Retrying submit in %.0fms", delay_seconds * 1000)
                await self.clock.sleep(delay_seconds)

        logger.error("All %s submit attempts failed: %s", self.max_attempts, last_error)
        return SubmitOutcome.failed(last_error, attempts=self.max_attempts)

    async def batch_submit(self, descriptors: Sequence[TaskDescriptor]) -> list[SubmitOutcome]:
        """Submit all descriptors concurrently; outcomes keep input order."""

        results = await asyncio.gather(
            *(self.submit(descriptor) for descriptor in descriptors),
            return_exceptions=True,
        )
        outcomes: list[SubmitOutcome] = []
        for descriptor, result in zip(descriptors, results, strict=True):
            if isinstance(result, SubmitOutcome):
                outcomes.append(result)
                continue
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.error(
                "Submit %s raised unexpectedly: %r",
                descriptor.task_type.value,
                result,
            )
            outcomes.append(SubmitOutcome.failed(f"submission error: {result}", attempts=1))
        return outcomes

    def compute_backoff(self, *, attempt: int) -> float:
        """Delay after failed `attempt`: base * 2^(attempt-1) plus uniform jitter."""

        base_delay = self.backoff_base_seconds * (2 ** max(attempt - 1, 0))
        return base_delay + self._random.uniform(0, self.backoff_jitter_seconds)
