"""Polling loop: per-message pipeline and its scheduler."""

from gmail_slack_forwarder.poller.processor import MessageOutcome, MessageProcessor, ProcessResult
from gmail_slack_forwarder.poller.scheduler import Poller, PollerState

__all__ = [
    "MessageOutcome",
    "MessageProcessor",
    "ProcessResult",
    "Poller",
    "PollerState",
]
