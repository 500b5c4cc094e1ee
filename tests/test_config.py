from __future__ import annotations

import allure
import pytest

from task_relay.config import PollingSettings, QueueSettings, Settings, SubmitSettings

pytestmark = [
    allure.epic("Task Relay"),
    allure.feature("Configuration"),
]


def _settings(**polling: float) -> Settings:
    return Settings(
        queue=QueueSettings(base_url="https://queue.example.com"),
        polling=PollingSettings(**polling),
    )


def test_defaults_match_queue_contract() -> None:
    settings = Settings()

    assert settings.submit.max_attempts == 3
    assert settings.polling.poll_interval_seconds == 3.0
    assert settings.polling.wait_timeout_seconds == 600.0
    assert settings.polling.stuck_threshold_seconds == 15.0
    assert settings.polling.max_transport_failures == 3
    assert settings.batch.default_image_count == 3


def test_from_env_reads_overrides(monkeypatch) -> None:
    monkeypatch.setenv("TASK_RELAY_BASE_URL", " https://queue.example.com ")
    monkeypatch.setenv("TASK_RELAY_API_KEY", "secret")
    monkeypatch.setenv("TASK_RELAY_POLL_INTERVAL_SECONDS", "0.5")
    monkeypatch.setenv("TASK_RELAY_SUBMIT_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("TASK_RELAY_CONVERSATION_ID", "conv-9")

    settings = Settings.from_env()

    assert settings.queue.base_url == "https://queue.example.com"
    assert settings.queue.api_key == "secret"
    assert settings.polling.poll_interval_seconds == 0.5
    assert settings.submit.max_attempts == 5
    assert settings.batch.conversation_id == "conv-9"


def test_from_env_prefers_explicit_base_url(monkeypatch) -> None:
    monkeypatch.setenv("TASK_RELAY_BASE_URL", "https://env.example.com")

    settings = Settings.from_env(base_url="https://flag.example.com")

    assert settings.queue.base_url == "https://flag.example.com"


def test_validate_requires_base_url() -> None:
    with pytest.raises(ValueError, match="TASK_RELAY_BASE_URL"):
        Settings().validate()


def test_validate_rejects_non_http_base_url() -> None:
    settings = Settings(queue=QueueSettings(base_url="ftp://queue.example.com"))

    with pytest.raises(ValueError, match="Invalid queue base URL"):
        settings.validate()


def test_validate_rejects_non_positive_poll_interval() -> None:
    with pytest.raises(ValueError, match="POLL_INTERVAL_SECONDS"):
        _settings(poll_interval_seconds=0).validate()


def test_validate_rejects_zero_submit_attempts() -> None:
    settings = _settings()
    settings.submit = SubmitSettings(max_attempts=0)

    with pytest.raises(ValueError, match="SUBMIT_MAX_ATTEMPTS"):
        settings.validate()


def test_validate_accepts_defaults_with_base_url() -> None:
    _settings().validate()
