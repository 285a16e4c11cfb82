"""Data models for the Gmail module."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime


@dataclass
class OAuthToken:
    """Persisted OAuth2 token for one Gmail account.

    ``expiry_date`` is epoch milliseconds, matching the on-disk JSON.
    """

    access_token: str
    refresh_token: str
    scope: str
    token_type: str = "Bearer"
    expiry_date: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> OAuthToken:
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            scope=data.get("scope", ""),
            token_type=data.get("token_type", "Bearer"),
            expiry_date=int(data.get("expiry_date") or 0),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    def expires_within(self, margin_seconds: float, now_ms: int | None = None) -> bool:
        """True if the token expires less than ``margin_seconds`` from now."""
        if not self.expiry_date:
            return False
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return self.expiry_date < now_ms + int(margin_seconds * 1000)


@dataclass(frozen=True)
class AttachmentInfo:
    """A file attached somewhere in a message's MIME tree."""

    attachment_id: str
    filename: str
    mime_type: str = "application/octet-stream"
    size: int = 0


@dataclass(frozen=True)
class ParsedEmail:
    """Structured representation of a Gmail message."""

    message_id: str
    thread_id: str
    subject: str
    sender: str
    recipient: str
    date: datetime
    body: str
    attachments: tuple[AttachmentInfo, ...] = field(default_factory=tuple)
    snippet: str = ""
