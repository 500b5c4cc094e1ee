"""Use-case services wiring settings, queue client and orchestrators."""

from __future__ import annotations

import base64
import mimetypes
from collections.abc import Sequence
from pathlib import Path

from task_relay.config import Settings
from task_relay.relay.batch_poller import BatchPoller
from task_relay.relay.client import HttpQueueClient, QueueClient
from task_relay.relay.clock import Clock, SystemClock
from task_relay.relay.models import (
    BatchResult,
    ImageGenerationRequest,
    ImageInput,
    OcrItem,
    OcrLineResult,
    OcrResult,
    ProgressCallback,
    TaskSnapshot,
    TaskType,
)
from task_relay.relay.orchestrator import BatchOrchestrator, OcrBatchOrchestrator
from task_relay.relay.poller import Poller, PollRound


class RelayService:
    """Entry point for one process: one client, fresh orchestrators per call."""

    def __init__(
        self,
        *,
        client: QueueClient,
        settings: Settings,
        clock: Clock | None = None,
    ) -> None:
        self.client = client
        self.settings = settings
        self.clock = clock or SystemClock()

    @classmethod
    def from_settings(cls, settings: Settings, *, clock: Clock | None = None) -> RelayService:
        queue = settings.queue
        client = HttpQueueClient(
            base_url=queue.base_url,
            api_key=queue.api_key,
            timeout_seconds=queue.request_timeout_seconds,
            submit_path=queue.submit_path,
            check_path=queue.check_path,
            reprocess_path=queue.reprocess_path,
            ocr_reprocess_path=queue.ocr_reprocess_path,
        )
        return cls(client=client, settings=settings, clock=clock)

    async def generate_images(
        self,
        request: ImageGenerationRequest,
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult:
        return await self._image_orchestrator().run(request, on_progress)

    async def recognize_lines(
        self,
        items: Sequence[OcrItem],
        *,
        conversation_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> list[OcrLineResult]:
        return await self._ocr_orchestrator().run(
            conversation_id or self.settings.batch.conversation_id,
            items,
            on_progress,
        )

    async def recognize_text(
        self,
        *,
        wording: str,
        image_data: str,
        image_name: str | None = None,
        conversation_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> OcrResult:
        return await self._ocr_orchestrator().run_single(
            conversation_id or self.settings.batch.conversation_id,
            wording,
            image_data,
            image_name,
            on_progress,
        )

    async def check(self, task_ids: Sequence[str]) -> PollRound:
        polling = self.settings.polling
        poller = Poller(
            self.client,
            poll_interval_seconds=polling.poll_interval_seconds,
            wait_timeout_seconds=polling.wait_timeout_seconds,
            max_transport_failures=polling.max_transport_failures,
            clock=self.clock,
        )
        return await poller.poll_once(list(task_ids))

    async def wait(
        self,
        task_ids: Sequence[str],
        *,
        task_type: TaskType | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> list[TaskSnapshot]:
        polling = self.settings.polling
        batch_poller = BatchPoller(
            self.client,
            poll_interval_seconds=polling.poll_interval_seconds,
            wait_timeout_seconds=polling.wait_timeout_seconds,
            max_transport_failures=polling.max_transport_failures,
            stuck_threshold_seconds=polling.stuck_threshold_seconds,
            task_type=task_type,
            clock=self.clock,
        )
        return await batch_poller.wait_all_until_done(task_ids, on_progress)

    async def reprocess(
        self,
        task_id: str,
        trigger_id: str,
        *,
        task_type: TaskType | None = None,
    ) -> bool:
        return await self.client.reprocess(task_id, trigger_id, task_type=task_type)

    async def aclose(self) -> None:
        close = getattr(self.client, "aclose", None)
        if close is not None:
            await close()

    def _image_orchestrator(self) -> BatchOrchestrator:
        return BatchOrchestrator(
            self.client,
            submit_settings=self.settings.submit,
            polling_settings=self.settings.polling,
            clock=self.clock,
        )

    def _ocr_orchestrator(self) -> OcrBatchOrchestrator:
        return OcrBatchOrchestrator(
            self.client,
            submit_settings=self.settings.submit,
            polling_settings=self.settings.polling,
            clock=self.clock,
        )


def image_input_from_path(path: Path) -> ImageInput:
    """Read an image file into the base64 form used by image generation."""

    return ImageInput(
        base64=base64.b64encode(path.read_bytes()).decode("ascii"),
        mime_type=_guess_image_mime_type(path),
    )


def data_url_from_path(path: Path) -> str:
    """Read an image file into a ``data:`` URL as expected by OCR tasks."""

    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{_guess_image_mime_type(path)};base64,{encoded}"


def _guess_image_mime_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(path.name)
    if mime_type is None or not mime_type.startswith("image/"):
        raise ValueError(f"Not an image file: {path}")
    return mime_type
