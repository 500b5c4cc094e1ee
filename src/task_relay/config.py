"""Runtime configuration for the remote queue relay."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import urlparse


@dataclass(slots=True)
class QueueSettings:
    """Remote queue endpoint settings."""

    base_url: str = ""
    api_key: str | None = None
    request_timeout_seconds: float = 30.0
    submit_path: str = "/functions/v1/submit-task"
    check_path: str = "/functions/v1/check-task"
    reprocess_path: str = "/functions/v1/process-task"
    ocr_reprocess_path: str = "/functions/v1/process-ocr-task"


@dataclass(slots=True)
class SubmitSettings:
    """Submission retry budget."""

    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_jitter_seconds: float = 1.0


@dataclass(slots=True)
class PollingSettings:
    """Polling cadence, wait budget and stuck-task threshold."""

    poll_interval_seconds: float = 3.0
    wait_timeout_seconds: float = 600.0
    stuck_threshold_seconds: float = 15.0
    max_transport_failures: int = 3


@dataclass(slots=True)
class BatchSettings:
    """Defaults for fan-out requests."""

    default_image_count: int = 3
    conversation_id: str = "default"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    queue: QueueSettings = field(default_factory=QueueSettings)
    submit: SubmitSettings = field(default_factory=SubmitSettings)
    polling: PollingSettings = field(default_factory=PollingSettings)
    batch: BatchSettings = field(default_factory=BatchSettings)

    @classmethod
    def from_env(cls, base_url: str | None = None) -> Settings:
        """Load settings from environment with defaults matching the queue contract."""

        return cls(
            queue=QueueSettings(
                base_url=(base_url or os.getenv("TASK_RELAY_BASE_URL", "")).strip(),
                api_key=os.getenv("TASK_RELAY_API_KEY") or None,
                request_timeout_seconds=float(
                    os.getenv("TASK_RELAY_REQUEST_TIMEOUT_SECONDS", "30.0"),
                ),
                submit_path=os.getenv("TASK_RELAY_SUBMIT_PATH", "/functions/v1/submit-task"),
                check_path=os.getenv("TASK_RELAY_CHECK_PATH", "/functions/v1/check-task"),
                reprocess_path=os.getenv(
                    "TASK_RELAY_REPROCESS_PATH",
                    "/functions/v1/process-task",
                ),
                ocr_reprocess_path=os.getenv(
                    "TASK_RELAY_OCR_REPROCESS_PATH",
                    "/functions/v1/process-ocr-task",
                ),
            ),
            submit=SubmitSettings(
                max_attempts=int(os.getenv("TASK_RELAY_SUBMIT_MAX_ATTEMPTS", "3")),
                backoff_base_seconds=float(
                    os.getenv("TASK_RELAY_SUBMIT_BACKOFF_BASE_SECONDS", "1.0"),
                ),
                backoff_jitter_seconds=float(
                    os.getenv("TASK_RELAY_SUBMIT_BACKOFF_JITTER_SECONDS", "1.0"),
                ),
            ),
            polling=PollingSettings(
                poll_interval_seconds=float(os.getenv("TASK_RELAY_POLL_INTERVAL_SECONDS", "3.0")),
                wait_timeout_seconds=float(os.getenv("TASK_RELAY_WAIT_TIMEOUT_SECONDS", "600.0")),
                stuck_threshold_seconds=float(
                    os.getenv("TASK_RELAY_STUCK_THRESHOLD_SECONDS", "15.0"),
                ),
                max_transport_failures=int(
                    os.getenv("TASK_RELAY_MAX_TRANSPORT_FAILURES", "3"),
                ),
            ),
            batch=BatchSettings(
                default_image_count=int(os.getenv("TASK_RELAY_DEFAULT_IMAGE_COUNT", "3")),
                conversation_id=os.getenv("TASK_RELAY_CONVERSATION_ID", "default"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if the relay cannot run with these values."""

        _validate_base_url(self.queue.base_url)
        if self.queue.request_timeout_seconds <= 0:
            raise ValueError("TASK_RELAY_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if self.submit.max_attempts < 1:
            raise ValueError("TASK_RELAY_SUBMIT_MAX_ATTEMPTS must be >= 1.")
        if self.submit.backoff_base_seconds < 0:
            raise ValueError("TASK_RELAY_SUBMIT_BACKOFF_BASE_SECONDS must be >= 0.")
        if self.submit.backoff_jitter_seconds < 0:
            raise ValueError("TASK_RELAY_SUBMIT_BACKOFF_JITTER_SECONDS must be >= 0.")
        if self.polling.poll_interval_seconds <= 0:
            raise ValueError("TASK_RELAY_POLL_INTERVAL_SECONDS must be > 0.")
        if self.polling.wait_timeout_seconds <= 0:
            raise ValueError("TASK_RELAY_WAIT_TIMEOUT_SECONDS must be > 0.")
        if self.polling.stuck_threshold_seconds <= 0:
            raise ValueError("TASK_RELAY_STUCK_THRESHOLD_SECONDS must be > 0.")
        if self.polling.max_transport_failures < 1:
            raise ValueError("TASK_RELAY_MAX_TRANSPORT_FAILURES must be >= 1.")
        if self.batch.default_image_count < 1:
            raise ValueError("TASK_RELAY_DEFAULT_IMAGE_COUNT must be >= 1.")


def _validate_base_url(value: str) -> None:
    if not value:
        raise ValueError("Queue base URL is required. Set TASK_RELAY_BASE_URL or pass --base-url.")
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid queue base URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
