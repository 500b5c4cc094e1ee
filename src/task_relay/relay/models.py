"""Domain models for remote task submission, polling and aggregation."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from task_relay.relay.clock import from_iso
from task_relay.relay.errors import QueueProtocolError

TIMEOUT_ERROR_MESSAGE = "timeout"


class TaskType(str, Enum):
    """Job kinds accepted by the remote queue."""

    IMAGE_STEP1 = "gemini-image-step1"
    IMAGE_STEP2 = "gemini-image-step2"
    OCR = "dify-ocr"

    @property
    def is_image(self) -> bool:
        return self in {TaskType.IMAGE_STEP1, TaskType.IMAGE_STEP2}


class TaskStatus(str, Enum):
    """Remote task lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.DONE, TaskStatus.FAILED}

    @property
    def rank(self) -> int:
        """Position in the forward-only lifecycle; terminal states share a rank."""

        return _STATUS_RANK[self]


_STATUS_RANK = {
    TaskStatus.PENDING: 0,
    TaskStatus.PROCESSING: 1,
    TaskStatus.DONE: 2,
    TaskStatus.FAILED: 2,
}


@dataclass(slots=True, frozen=True)
class TaskSnapshot:
    """Read-only view of one remote task as returned by a status check."""

    task_id: str
    status: TaskStatus
    output_data: dict[str, Any] | None = None
    error_message: str | None = None
    trigger_id: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TaskSnapshot:
        """Build a snapshot from the queue's camelCase task record."""

        task_id = payload.get("taskId")
        if not isinstance(task_id, str) or not task_id:
            raise QueueProtocolError(f"Task record without taskId: {payload!r}")
        raw_status = payload.get("status")
        try:
            status = TaskStatus(raw_status)
        except ValueError as error:
            raise QueueProtocolError(
                f"Unknown status {raw_status!r} for task {task_id}",
            ) from error

        output_data = payload.get("outputData")
        if output_data is not None and not isinstance(output_data, dict):
            raise QueueProtocolError(f"outputData must be an object for task {task_id}")

        created_raw = payload.get("createdAt")
        created_at = None
        if isinstance(created_raw, str) and created_raw.strip():
            try:
                created_at = from_iso(created_raw)
            except ValueError as error:
                raise QueueProtocolError(
                    f"Invalid createdAt {created_raw!r} for task {task_id}",
                ) from error

        trigger_id = payload.get("triggerId")
        error_message = payload.get("errorMessage")
        return cls(
            task_id=task_id,
            status=status,
            output_data=output_data if status == TaskStatus.DONE else None,
            error_message=str(error_message) if error_message is not None else None,
            trigger_id=str(trigger_id) if trigger_id else None,
            created_at=created_at,
        )

    @classmethod
    def timed_out(cls, task_id: str) -> TaskSnapshot:
        """Local failure for an id never resolved within a wait budget."""

        return cls(
            task_id=task_id,
            status=TaskStatus.FAILED,
            error_message=TIMEOUT_ERROR_MESSAGE,
        )


@dataclass(slots=True, frozen=True)
class TaskDescriptor:
    """One job description for `submit`."""

    task_type: TaskType
    conversation_id: str
    input_data: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return {
            "taskType": self.task_type.value,
            "conversationId": self.conversation_id,
            "inputData": self.input_data,
        }


@dataclass(slots=True, frozen=True)
class SubmitResponse:
    """Decoded `submit` response body."""

    success: bool
    task_id: str | None = None
    error: str | None = None


@dataclass(slots=True, frozen=True)
class CheckResponse:
    """Decoded `check` response body."""

    success: bool
    tasks: tuple[TaskSnapshot, ...] = ()
    error: str | None = None


@dataclass(slots=True, frozen=True)
class SubmitOutcome:
    """Result of a submission with retries: exactly one of task id or error."""

    task_id: str | None
    error: str | None
    attempts: int

    def __post_init__(self) -> None:
        if (self.task_id is None) == (self.error is None):
            raise ValueError("SubmitOutcome needs exactly one of task_id and error.")
        if self.task_id is not None and not self.task_id:
            raise ValueError("SubmitOutcome task_id must be non-empty.")

    @property
    def ok(self) -> bool:
        return self.task_id is not None

    @classmethod
    def succeeded(cls, task_id: str, *, attempts: int) -> SubmitOutcome:
        return cls(task_id=task_id, error=None, attempts=attempts)

    @classmethod
    def failed(cls, error: str, *, attempts: int) -> SubmitOutcome:
        return cls(task_id=None, error=error or "submission failed", attempts=attempts)


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    """Progress snapshot emitted by submission and polling loops.

    `stage` is one of ``submitting``, ``processing`` or ``status``; the latter
    carries the observed task status of a single-task wait.
    """

    stage: str
    completed: int
    total: int
    status: TaskStatus | None = None


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass(slots=True, frozen=True)
class ImageInput:
    """Reference image passed to image generation."""

    base64: str
    mime_type: str

    def to_payload(self) -> dict[str, str]:
        return {"base64": self.base64, "mimeType": self.mime_type}


@dataclass(slots=True, frozen=True)
class ImageGenerationRequest:
    """Logical request for `count` generated images."""

    conversation_id: str
    prompt: str
    images: tuple[ImageInput, ...] = ()
    aspect_ratio: str = "1:1"
    image_size: str = "1K"
    count: int = 3
    task_type: TaskType = TaskType.IMAGE_STEP1

    def unit_descriptor(self) -> TaskDescriptor:
        """Descriptor for a single-image unit of this request."""

        return TaskDescriptor(
            task_type=self.task_type,
            conversation_id=self.conversation_id,
            input_data={
                "prompt": self.prompt,
                "images": [image.to_payload() for image in self.images],
                "aspectRatio": self.aspect_ratio,
                "imageSize": self.image_size,
                "count": 1,
            },
        )


@dataclass(slots=True, frozen=True)
class OcrItem:
    """One text-recognition unit keyed by its source line index."""

    line_index: int
    wording: str
    image_data: str
    image_name: str | None = None

    def to_descriptor(self, conversation_id: str) -> TaskDescriptor:
        input_data: dict[str, Any] = {
            "wording": self.wording,
            "imageData": self.image_data,
        }
        if self.image_name:
            input_data["imageName"] = self.image_name
        return TaskDescriptor(
            task_type=TaskType.OCR,
            conversation_id=conversation_id,
            input_data=input_data,
        )


@dataclass(slots=True)
class BatchResult:
    """Aggregated image batch outcome."""

    success: bool
    outputs: list[str]
    succeeded_count: int
    requested_count: int
    diagnostic: str | None = None
    unit_errors: dict[int, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class OcrLineResult:
    """Recognized text for one line; `error` is set when the unit failed."""

    line_index: int
    text: str
    error: str | None = None
    duration: float | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True, frozen=True)
class OcrResult:
    """Single OCR task outcome."""

    success: bool
    text: str
    duration: float | None = None
    error: str | None = None
