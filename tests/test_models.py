from __future__ import annotations

from datetime import UTC, datetime

import allure
import pytest

from task_relay.relay.errors import QueueProtocolError
from task_relay.relay.models import (
    ImageGenerationRequest,
    ImageInput,
    OcrItem,
    SubmitOutcome,
    TaskSnapshot,
    TaskStatus,
    TaskType,
)

pytestmark = [
    allure.epic("Task Relay"),
    allure.feature("Task Records"),
]


def test_snapshot_from_payload_parses_camel_case_record() -> None:
    snapshot = TaskSnapshot.from_payload(
        {
            "taskId": "t-1",
            "status": "done",
            "outputData": {"generatedImages": ["https://cdn.example.com/1.png"]},
            "triggerId": "trig-1",
            "createdAt": "2026-03-01T12:00:00Z",
        },
    )

    assert snapshot.task_id == "t-1"
    assert snapshot.status == TaskStatus.DONE
    assert snapshot.output_data == {"generatedImages": ["https://cdn.example.com/1.png"]}
    assert snapshot.trigger_id == "trig-1"
    assert snapshot.created_at == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_snapshot_drops_output_data_unless_done() -> None:
    snapshot = TaskSnapshot.from_payload(
        {"taskId": "t-1", "status": "processing", "outputData": {"text": "partial"}},
    )

    assert snapshot.output_data is None


def test_snapshot_keeps_error_message_of_failed_task() -> None:
    snapshot = TaskSnapshot.from_payload(
        {"taskId": "t-1", "status": "failed", "errorMessage": "model overloaded"},
    )

    assert snapshot.status == TaskStatus.FAILED
    assert snapshot.error_message == "model overloaded"


def test_snapshot_treats_naive_created_at_as_utc() -> None:
    snapshot = TaskSnapshot.from_payload(
        {"taskId": "t-1", "status": "pending", "createdAt": "2026-03-01T12:00:00"},
    )

    assert snapshot.created_at == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    "payload",
    [
        {"status": "pending"},
        {"taskId": "t-1", "status": "queued"},
        {"taskId": "t-1", "status": "done", "outputData": ["not", "an", "object"]},
        {"taskId": "t-1", "status": "pending", "createdAt": "yesterday"},
    ],
)
def test_snapshot_rejects_malformed_records(payload: dict) -> None:
    with pytest.raises(QueueProtocolError):
        TaskSnapshot.from_payload(payload)


def test_timed_out_snapshot_is_failed_with_timeout_message() -> None:
    snapshot = TaskSnapshot.timed_out("t-9")

    assert snapshot.task_id == "t-9"
    assert snapshot.status == TaskStatus.FAILED
    assert snapshot.error_message == "timeout"


def test_status_rank_is_forward_only() -> None:
    assert TaskStatus.PENDING.rank < TaskStatus.PROCESSING.rank < TaskStatus.DONE.rank
    assert TaskStatus.DONE.rank == TaskStatus.FAILED.rank
    assert not TaskStatus.PROCESSING.is_terminal
    assert TaskStatus.FAILED.is_terminal


def test_submit_outcome_requires_exactly_one_of_id_and_error() -> None:
    with pytest.raises(ValueError, match="exactly one"):
        SubmitOutcome(task_id="t-1", error="boom", attempts=1)
    with pytest.raises(ValueError, match="exactly one"):
        SubmitOutcome(task_id=None, error=None, attempts=1)
    with pytest.raises(ValueError, match="non-empty"):
        SubmitOutcome(task_id="", error=None, attempts=1)


def test_submit_outcome_failed_never_carries_empty_error() -> None:
    outcome = SubmitOutcome.failed("", attempts=3)

    assert not outcome.ok
    assert outcome.error == "submission failed"


def test_image_request_unit_descriptor_asks_for_single_image() -> None:
    request = ImageGenerationRequest(
        conversation_id="conv-1",
        prompt="a lighthouse at dusk",
        images=(ImageInput(base64="aGVsbG8=", mime_type="image/png"),),
        aspect_ratio="16:9",
        count=4,
        task_type=TaskType.IMAGE_STEP2,
    )

    payload = request.unit_descriptor().to_payload()

    assert payload == {
        "taskType": "gemini-image-step2",
        "conversationId": "conv-1",
        "inputData": {
            "prompt": "a lighthouse at dusk",
            "images": [{"base64": "aGVsbG8=", "mimeType": "image/png"}],
            "aspectRatio": "16:9",
            "imageSize": "1K",
            "count": 1,
        },
    }


def test_ocr_item_descriptor_omits_missing_image_name() -> None:
    descriptor = OcrItem(line_index=2, wording="Hello", image_data="data:image/png;base64,AA==")

    payload = descriptor.to_descriptor("conv-1").to_payload()

    assert payload["taskType"] == "dify-ocr"
    assert payload["inputData"] == {"wording": "Hello", "imageData": "data:image/png;base64,AA=="}
