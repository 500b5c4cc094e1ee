"""Asynchronous submit / poll / recover relay for remote queue tasks."""

from task_relay.relay.batch_poller import BatchPoller
from task_relay.relay.client import HttpQueueClient, QueueClient
from task_relay.relay.errors import QueueProtocolError, QueueTransportError, RelayError
from task_relay.relay.orchestrator import (
    BatchOrchestrator,
    FanOutOrchestrator,
    OcrBatchOrchestrator,
)
from task_relay.relay.poller import Poller, PollRound
from task_relay.relay.recovery import StuckTaskRecovery
from task_relay.relay.submitter import TaskSubmitter

__all__ = [
    "BatchOrchestrator",
    "BatchPoller",
    "FanOutOrchestrator",
    "HttpQueueClient",
    "OcrBatchOrchestrator",
    "PollRound",
    "Poller",
    "QueueClient",
    "QueueProtocolError",
    "QueueTransportError",
    "RelayError",
    "StuckTaskRecovery",
    "TaskSubmitter",
]
