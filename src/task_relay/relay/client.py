"""Async HTTP client for the remote task queue."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from task_relay.relay.errors import QueueProtocolError, QueueTransportError
from task_relay.relay.models import (
    CheckResponse,
    SubmitResponse,
    TaskDescriptor,
    TaskSnapshot,
    TaskType,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_SUBMIT_PATH = "/functions/v1/submit-task"
DEFAULT_CHECK_PATH = "/functions/v1/check-task"
DEFAULT_REPROCESS_PATH = "/functions/v1/process-task"
DEFAULT_OCR_REPROCESS_PATH = "/functions/v1/process-ocr-task"


class QueueClient(Protocol):
    """Narrow interface to the remote queue: submit, check, reprocess."""

    async def submit(self, descriptor: TaskDescriptor) -> SubmitResponse:
        """Create one remote task."""

    async def check(self, task_ids: list[str]) -> CheckResponse:
        """Read current snapshots for the given ids."""

    async def reprocess(
        self,
        task_id: str,
        trigger_id: str,
        *,
        task_type: TaskType | None = None,
    ) -> bool:
        """Ask the queue to restart a task; True when accepted."""


class HttpQueueClient:
    """JSON-over-POST queue client with shared connection pool."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        submit_path: str = DEFAULT_SUBMIT_PATH,
        check_path: str = DEFAULT_CHECK_PATH,
        reprocess_path: str = DEFAULT_REPROCESS_PATH,
        ocr_reprocess_path: str = DEFAULT_OCR_REPROCESS_PATH,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.submit_path = submit_path
        self.check_path = check_path
        self.reprocess_path = reprocess_path
        self.ocr_reprocess_path = ocr_reprocess_path
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
            headers["apikey"] = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=transport,
        )

    async def submit(self, descriptor: TaskDescriptor) -> SubmitResponse:
        body = await self._post_json(self.submit_path, descriptor.to_payload())
        task_id = body.get("taskId")
        return SubmitResponse(
            success=bool(body.get("success")),
            task_id=str(task_id) if task_id else None,
            error=_optional_str(body.get("error")),
        )

    async def check(self, task_ids: list[str]) -> CheckResponse:
        body = await self._post_json(self.check_path, {"taskIds": list(task_ids)})
        if not body.get("success"):
            return CheckResponse(
                success=False,
                error=_optional_str(body.get("error")) or "check rejected",
            )
        raw_tasks = body.get("tasks") or []
        if not isinstance(raw_tasks, list):
            raise QueueProtocolError("check response 'tasks' must be a list")
        # a bad record drops only its own id; callers see it as missing
        tasks = []
        for raw in raw_tasks:
            if not isinstance(raw, dict):
                logger.warning("Skipping non-object task record in check response: %r", raw)
                continue
            try:
                tasks.append(TaskSnapshot.from_payload(raw))
            except QueueProtocolError as exc:
                logger.warning("Skipping malformed task record: %s", exc)
        return CheckResponse(success=True, tasks=tuple(tasks))

    async def reprocess(
        self,
        task_id: str,
        trigger_id: str,
        *,
        task_type: TaskType | None = None,
    ) -> bool:
        path = self.ocr_reprocess_path if task_type == TaskType.OCR else self.reprocess_path
        try:
            response = await self._client.post(
                path,
                json={"taskId": task_id, "triggerId": trigger_id},
            )
        except httpx.HTTPError as exc:
            raise QueueTransportError(f"reprocess {task_id}: {exc}") from exc
        if response.status_code >= 500:  # noqa: PLR2004
            raise QueueTransportError(
                f"reprocess {task_id}: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not response.is_success:
            logger.warning(
                "Reprocess rejected for %s: HTTP %s",
                task_id,
                response.status_code,
            )
            return False
        return True

    async def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.TimeoutException as exc:
            raise QueueTransportError(f"POST {path}: timeout") from exc
        except httpx.HTTPError as exc:
            raise QueueTransportError(f"POST {path}: {exc}") from exc

        if not response.is_success:
            raise QueueTransportError(
                f"POST {path}: HTTP {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise QueueTransportError(f"POST {path}: response is not JSON") from exc
        if not isinstance(body, dict):
            raise QueueTransportError(f"POST {path}: response is not a JSON object")
        return body

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpQueueClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
