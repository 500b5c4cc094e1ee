"""Fan-out / fan-in orchestration of logical requests over single-unit tasks.

A request for N images becomes N independent ``count=1`` tasks so each task
stays short and one unit's failure does not take its siblings down. Results
are gathered back through one `BatchPoller` call per logical request.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from typing import Any

from task_relay.config import PollingSettings, SubmitSettings
from task_relay.relay.batch_poller import BatchPoller
from task_relay.relay.client import QueueClient
from task_relay.relay.clock import Clock, SystemClock
from task_relay.relay.models import (
    BatchResult,
    ImageGenerationRequest,
    OcrItem,
    OcrLineResult,
    OcrResult,
    ProgressCallback,
    ProgressEvent,
    SubmitOutcome,
    TaskDescriptor,
    TaskSnapshot,
    TaskStatus,
    TaskType,
)
from task_relay.relay.poller import Poller, emit_progress
from task_relay.relay.recovery import StuckTaskRecovery
from task_relay.relay.submitter import TaskSubmitter

logger = logging.getLogger(__name__)


class FanOutOrchestrator:
    """Shared wiring: submit units concurrently, then wait for them as one batch."""

    def __init__(
        self,
        client: QueueClient,
        *,
        submit_settings: SubmitSettings | None = None,
        polling_settings: PollingSettings | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.client = client
        self.submit_settings = submit_settings or SubmitSettings()
        self.polling_settings = polling_settings or PollingSettings()
        self.clock = clock or SystemClock()
        self._random = rng

    def submitter(self) -> TaskSubmitter:
        return TaskSubmitter(
            self.client,
            max_attempts=self.submit_settings.max_attempts,
            backoff_base_seconds=self.submit_settings.backoff_base_seconds,
            backoff_jitter_seconds=self.submit_settings.backoff_jitter_seconds,
            clock=self.clock,
            rng=self._random,
        )

    def batch_poller(self, task_type: TaskType) -> BatchPoller:
        polling = self.polling_settings
        return BatchPoller(
            self.client,
            poll_interval_seconds=polling.poll_interval_seconds,
            wait_timeout_seconds=polling.wait_timeout_seconds,
            max_transport_failures=polling.max_transport_failures,
            stuck_threshold_seconds=polling.stuck_threshold_seconds,
            task_type=task_type,
            clock=self.clock,
        )

    def poller(self) -> Poller:
        polling = self.polling_settings
        return Poller(
            self.client,
            poll_interval_seconds=polling.poll_interval_seconds,
            wait_timeout_seconds=polling.wait_timeout_seconds,
            max_transport_failures=polling.max_transport_failures,
            clock=self.clock,
        )

    async def _fan_out(self, descriptors: Sequence[TaskDescriptor]) -> list[SubmitOutcome]:
        return await self.submitter().batch_submit(descriptors)

    async def _fan_in(
        self,
        task_ids: list[str],
        *,
        task_type: TaskType,
        on_progress: ProgressCallback | None,
    ) -> list[TaskSnapshot]:
        return await self.batch_poller(task_type).wait_all_until_done(task_ids, on_progress)


class BatchOrchestrator(FanOutOrchestrator):
    """Splits an image request into single-image tasks and aggregates them."""

    async def run(
        self,
        request: ImageGenerationRequest,
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult:
        """Generate `request.count` images as independent tasks."""

        total = request.count
        if total < 1:
            raise ValueError("count must be >= 1")
        logger.info(
            "Starting %s batch: %s single-image tasks (conversation %s)",
            request.task_type.value,
            total,
            request.conversation_id,
        )

        emit_progress(on_progress, ProgressEvent(stage="submitting", completed=0, total=total))
        descriptor = request.unit_descriptor()
        outcomes = await self._fan_out([descriptor] * total)

        unit_errors: dict[int, str] = {}
        submitted: list[tuple[int, str]] = []
        for unit, outcome in enumerate(outcomes, start=1):
            if outcome.task_id is not None:
                submitted.append((unit, outcome.task_id))
            else:
                unit_errors[unit] = f"submission failed: {outcome.error}"
        logger.info("Submitted %s/%s tasks", len(submitted), total)

        if not submitted:
            first_error = outcomes[0].error
            return BatchResult(
                success=False,
                outputs=[],
                succeeded_count=0,
                requested_count=total,
                diagnostic=f"all submissions failed: {first_error or 'unknown error'}",
                unit_errors=unit_errors,
            )

        emit_progress(on_progress, ProgressEvent(stage="processing", completed=0, total=total))
        snapshots = await self._fan_in(
            [task_id for _, task_id in submitted],
            task_type=request.task_type,
            on_progress=on_progress,
        )

        outputs: list[str] = []
        succeeded = 0
        for (unit, _), snapshot in zip(submitted, snapshots, strict=True):
            if snapshot.status == TaskStatus.DONE:
                images = _generated_images(snapshot)
                if images:
                    outputs.extend(images)
                    succeeded += 1
                else:
                    unit_errors[unit] = "finished without output"
            else:
                unit_errors[unit] = snapshot.error_message or "task failed"

        logger.info("Batch finished: %s/%s units produced output", succeeded, total)
        if succeeded == 0:
            return BatchResult(
                success=False,
                outputs=[],
                succeeded_count=0,
                requested_count=total,
                diagnostic=f"all units failed: {_describe_failures(unit_errors)}",
                unit_errors=unit_errors,
            )
        return BatchResult(
            success=True,
            outputs=outputs,
            succeeded_count=succeeded,
            requested_count=total,
            diagnostic=(
                f"partial failure: {_describe_failures(unit_errors)}" if unit_errors else None
            ),
            unit_errors=unit_errors,
        )


class OcrBatchOrchestrator(FanOutOrchestrator):
    """Text recognition over many lines, returned in line order."""

    async def run(
        self,
        conversation_id: str,
        items: Sequence[OcrItem],
        on_progress: ProgressCallback | None = None,
    ) -> list[OcrLineResult]:
        total = len(items)
        if total == 0:
            return []
        logger.info("Starting OCR batch of %s lines", total)

        emit_progress(on_progress, ProgressEvent(stage="submitting", completed=0, total=total))
        outcomes = await self._fan_out([item.to_descriptor(conversation_id) for item in items])

        results: list[OcrLineResult] = []
        submitted: list[tuple[OcrItem, str]] = []
        for item, outcome in zip(items, outcomes, strict=True):
            if outcome.task_id is not None:
                submitted.append((item, outcome.task_id))
            else:
                results.append(
                    OcrLineResult(
                        line_index=item.line_index,
                        text="",
                        error=outcome.error or "submission failed",
                    ),
                )
        logger.info("Submitted %s/%s OCR tasks", len(submitted), total)

        if submitted:
            emit_progress(
                on_progress,
                ProgressEvent(stage="processing", completed=0, total=total),
            )
            snapshots = await self._fan_in(
                [task_id for _, task_id in submitted],
                task_type=TaskType.OCR,
                on_progress=on_progress,
            )
            for (item, _), snapshot in zip(submitted, snapshots, strict=True):
                results.append(_line_result(item.line_index, snapshot))

        results.sort(key=lambda result: result.line_index)
        logger.info(
            "OCR batch finished: %s/%s lines recognized",
            sum(1 for result in results if result.ok),
            total,
        )
        return results

    async def run_single(  # noqa: PLR0913
        self,
        conversation_id: str,
        wording: str,
        image_data: str,
        image_name: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> OcrResult:
        """Submit one OCR task and wait for it with stuck-task recovery."""

        item = OcrItem(line_index=0, wording=wording, image_data=image_data, image_name=image_name)
        outcome = await self.submitter().submit(item.to_descriptor(conversation_id))
        if outcome.task_id is None:
            return OcrResult(success=False, text="", error=outcome.error or "submission failed")

        recovery = StuckTaskRecovery(
            self.client,
            threshold_seconds=self.polling_settings.stuck_threshold_seconds,
            task_type=TaskType.OCR,
        )
        snapshot = await self.poller().wait_until_done(outcome.task_id, on_progress, recovery)
        # a reprocess issued in the last round must reach the queue before the client closes
        await recovery.drain()
        if snapshot is None:
            return OcrResult(success=False, text="", error="timed out or status unavailable")

        line = _line_result(0, snapshot)
        if line.error is not None:
            return OcrResult(success=False, text="", error=line.error)
        return OcrResult(success=True, text=line.text, duration=line.duration)


def _generated_images(snapshot: TaskSnapshot) -> list[str]:
    output = snapshot.output_data or {}
    images = output.get("generatedImages") or []
    if not isinstance(images, list):
        return []
    return [image for image in images if isinstance(image, str) and image]


def _line_result(line_index: int, snapshot: TaskSnapshot) -> OcrLineResult:
    if snapshot.status == TaskStatus.DONE and snapshot.output_data is not None:
        output: dict[str, Any] = snapshot.output_data
        duration = output.get("duration")
        return OcrLineResult(
            line_index=line_index,
            text=str(output.get("text") or ""),
            duration=float(duration) if isinstance(duration, int | float) else None,
        )
    return OcrLineResult(
        line_index=line_index,
        text="",
        error=snapshot.error_message or "task failed",
    )


def _describe_failures(unit_errors: dict[int, str]) -> str:
    return "; ".join(f"unit {unit}: {reason}" for unit, reason in sorted(unit_errors.items()))
