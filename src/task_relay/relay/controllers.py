"""Controllers for relay CLI commands."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from task_relay.config import Settings
from task_relay.relay.clock import Clock
from task_relay.relay.errors import RelayError
from task_relay.relay.models import (
    ImageGenerationRequest,
    OcrItem,
    ProgressEvent,
    TaskSnapshot,
    TaskStatus,
    TaskType,
)
from task_relay.relay.services import RelayService, data_url_from_path, image_input_from_path

T = TypeVar("T")
ServiceFactory = Callable[[Settings], RelayService]

_PREVIEW_CHARS = 80


@dataclass(slots=True)
class CommandResult:
    """Lines to print plus overall success flag."""

    lines: list[str]
    success: bool = True


@dataclass(slots=True)
class ImagesCommand:
    """CLI input for batch image generation."""

    base_url: str | None
    prompt: str
    image_paths: tuple[Path, ...] = ()
    count: int | None = None
    aspect_ratio: str = "1:1"
    image_size: str = "1K"
    step: int = 1
    conversation_id: str | None = None


@dataclass(slots=True)
class OcrCommand:
    """CLI input for a single OCR task."""

    base_url: str | None
    image_path: Path
    wording: str
    conversation_id: str | None = None


@dataclass(slots=True)
class OcrBatchCommand:
    """CLI input for an OCR batch described by a JSON manifest."""

    base_url: str | None
    manifest_path: Path
    conversation_id: str | None = None


@dataclass(slots=True)
class CheckCommand:
    """CLI input for one status check."""

    base_url: str | None
    task_ids: tuple[str, ...]


@dataclass(slots=True)
class WaitCommand:
    """CLI input for waiting on existing task ids."""

    base_url: str | None
    task_ids: tuple[str, ...]
    task_type: str | None = None


@dataclass(slots=True)
class ReprocessCommand:
    """CLI input for a manual reprocess request."""

    base_url: str | None
    task_id: str
    trigger_id: str
    task_type: str | None = None


@dataclass(slots=True)
class _ProgressLines:
    lines: list[str] = field(default_factory=list)

    def __call__(self, event: ProgressEvent) -> None:
        if event.status is not None:
            self.lines.append(f"Progress: {event.stage} status={event.status.value}")
            return
        self.lines.append(f"Progress: {event.stage} {event.completed}/{event.total}")


class RelayCliController:
    """Runs relay use cases for the CLI and renders their results as lines."""

    def __init__(
        self,
        *,
        service_factory: ServiceFactory | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._service_factory = service_factory
        self._clock = clock

    def images(self, command: ImagesCommand) -> CommandResult:
        settings = self._settings(command.base_url)
        task_type = TaskType.IMAGE_STEP1
        if command.step == 2:  # noqa: PLR2004
            task_type = TaskType.IMAGE_STEP2
        request = ImageGenerationRequest(
            conversation_id=command.conversation_id or settings.batch.conversation_id,
            prompt=command.prompt,
            images=tuple(image_input_from_path(path) for path in command.image_paths),
            aspect_ratio=command.aspect_ratio,
            image_size=command.image_size,
            count=command.count or settings.batch.default_image_count,
            task_type=task_type,
        )
        progress = _ProgressLines()
        result = self._run(settings, lambda service: service.generate_images(request, progress))

        lines = [
            *progress.lines,
            f"Images: success={result.success} "
            f"succeeded={result.succeeded_count}/{result.requested_count}",
        ]
        lines.extend(
            f"  [{index}] {_preview(output)}" for index, output in enumerate(result.outputs, 1)
        )
        if result.diagnostic:
            lines.append(f"Diagnostic: {result.diagnostic}")
        return CommandResult(lines=lines, success=result.success)

    def ocr(self, command: OcrCommand) -> CommandResult:
        settings = self._settings(command.base_url)
        image_data = data_url_from_path(command.image_path)
        progress = _ProgressLines()
        result = self._run(
            settings,
            lambda service: service.recognize_text(
                wording=command.wording,
                image_data=image_data,
                image_name=command.image_path.name,
                conversation_id=command.conversation_id,
                on_progress=progress,
            ),
        )
        lines = list(progress.lines)
        if result.success:
            duration = f" duration={result.duration}" if result.duration is not None else ""
            lines.append(f"OCR: success=True{duration}")
            lines.append(result.text)
        else:
            lines.append(f"OCR: success=False error={result.error}")
        return CommandResult(lines=lines, success=result.success)

    def ocr_batch(self, command: OcrBatchCommand) -> CommandResult:
        settings = self._settings(command.base_url)
        items = _load_ocr_manifest(command.manifest_path)
        progress = _ProgressLines()
        results = self._run(
            settings,
            lambda service: service.recognize_lines(
                items,
                conversation_id=command.conversation_id,
                on_progress=progress,
            ),
        )
        lines = list(progress.lines)
        recognized = sum(1 for result in results if result.ok)
        lines.append(f"OCR batch: recognized={recognized}/{len(results)}")
        for result in results:
            if result.ok:
                lines.append(f"  line {result.line_index}: {result.text}")
            else:
                lines.append(f"  line {result.line_index}: error={result.error}")
        return CommandResult(lines=lines, success=recognized == len(results))

    def check(self, command: CheckCommand) -> CommandResult:
        settings = self._settings(command.base_url)
        poll_round = self._run(settings, lambda service: service.check(command.task_ids))
        if not poll_round.ok:
            return CommandResult(lines=[f"Check failed: {poll_round.error}"], success=False)
        lines = [
            _snapshot_line(poll_round.tasks[task_id])
            for task_id in command.task_ids
            if task_id in poll_round.tasks
        ]
        lines.extend(f"{task_id}: not found" for task_id in poll_round.missing)
        return CommandResult(lines=lines, success=not poll_round.missing)

    def wait(self, command: WaitCommand) -> CommandResult:
        settings = self._settings(command.base_url)
        task_type = TaskType(command.task_type) if command.task_type else None
        progress = _ProgressLines()
        snapshots = self._run(
            settings,
            lambda service: service.wait(
                command.task_ids,
                task_type=task_type,
                on_progress=progress,
            ),
        )
        lines = [*progress.lines, *(_snapshot_line(snapshot) for snapshot in snapshots)]
        return CommandResult(
            lines=lines,
            success=all(snapshot.status == TaskStatus.DONE for snapshot in snapshots),
        )

    def reprocess(self, command: ReprocessCommand) -> CommandResult:
        settings = self._settings(command.base_url)
        task_type = TaskType(command.task_type) if command.task_type else None
        try:
            accepted = self._run(
                settings,
                lambda service: service.reprocess(
                    command.task_id,
                    command.trigger_id,
                    task_type=task_type,
                ),
            )
        except RelayError as error:
            return CommandResult(lines=[f"Reprocess failed: {error}"], success=False)
        verdict = "accepted" if accepted else "rejected"
        return CommandResult(lines=[f"Reprocess {command.task_id}: {verdict}"], success=accepted)

    def _settings(self, base_url: str | None) -> Settings:
        settings = Settings.from_env(base_url=base_url)
        settings.validate()
        return settings

    def _service(self, settings: Settings) -> RelayService:
        if self._service_factory is not None:
            return self._service_factory(settings)
        return RelayService.from_settings(settings, clock=self._clock)

    def _run(self, settings: Settings, call: Callable[[RelayService], Awaitable[T]]) -> T:
        async def _invoke() -> T:
            service = self._service(settings)
            try:
                return await call(service)
            finally:
                await service.aclose()

        return asyncio.run(_invoke())


def _load_ocr_manifest(path: Path) -> list[OcrItem]:
    try:
        payload = json.loads(path.read_text("utf-8"))
    except json.JSONDecodeError as error:
        raise ValueError(f"OCR manifest is not valid JSON: {path}") from error
    if not isinstance(payload, list):
        raise ValueError("OCR manifest must be a JSON list of line entries.")

    items: list[OcrItem] = []
    for position, entry in enumerate(payload):
        if not isinstance(entry, dict):
            raise ValueError(f"OCR manifest entry #{position} must be an object.")
        try:
            line_index = int(entry["lineIndex"])
            wording = str(entry["wording"])
            image_path = path.parent / str(entry["image"])
        except (KeyError, TypeError, ValueError) as error:
            raise ValueError(
                f"OCR manifest entry #{position} needs lineIndex, wording and image.",
            ) from error
        items.append(
            OcrItem(
                line_index=line_index,
                wording=wording,
                image_data=data_url_from_path(image_path),
                image_name=image_path.name,
            ),
        )
    return items


def _snapshot_line(snapshot: TaskSnapshot) -> str:
    line = f"{snapshot.task_id}: {snapshot.status.value}"
    if snapshot.error_message:
        line += f" error={snapshot.error_message}"
    if snapshot.trigger_id:
        line += f" trigger_id={snapshot.trigger_id}"
    return line


def _preview(value: str) -> str:
    if len(value) <= _PREVIEW_CHARS:
        return value
    return value[:_PREVIEW_CHARS] + "..."
