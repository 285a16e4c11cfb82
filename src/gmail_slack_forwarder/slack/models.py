"""Data models for the Slack module."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class SlackPostResult:
    """Outcome of a chat.postMessage call."""

    ok: bool
    ts: str | None = None
    channel: str | None = None
    error: str | None = None


@dataclass
class FormattedMessage:
    """Block Kit blocks plus the plain-text fallback shown in notifications."""

    blocks: list[dict] = field(default_factory=list)
    text: str = ""


@dataclass
class FileUpload:
    """A file to share into a channel, optionally inside a thread."""

    channel_id: str
    filename: str
    content: bytes
    thread_ts: str | None = None
    mime_type: str | None = None
