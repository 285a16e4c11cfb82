"""Per-account Gmail mailbox operations on top of googleapiclient."""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from googleapiclient.discovery import build

from gmail_slack_forwarder.exceptions import GmailError
from gmail_slack_forwarder.gmail.auth import REFRESH_MARGIN_SECONDS, AuthManager

logger = logging.getLogger(__name__)

SLACK_DONE_LABEL = "slack_done"


class GmailClient:
    """One authenticated Gmail mailbox.

    Call :meth:`initialize` before anything else. No call is retried here;
    retry policy belongs to the caller.

    Args:
        auth: Shared :class:`AuthManager` holding the client secrets.
        token_path: Token JSON for this account.
        account_name: Used only for log messages.
    """

    def __init__(
        self,
        auth: AuthManager,
        token_path: Path | str,
        account_name: str | None = None,
    ) -> None:
        self._auth = auth
        self.token_path = Path(token_path)
        self.account_name = account_name or self.token_path.stem
        self.creds = None
        self._service = None
        self._done_label_id: str | None = None

    def initialize(self) -> None:
        """Authenticate, build the API service and make sure the done label exists."""
        self._connect()
        self.ensure_label(SLACK_DONE_LABEL)

    def _connect(self) -> None:
        self.creds = self._auth.get_authenticated_client(self.token_path)
        self._service = build(
            "gmail", "v1", credentials=self.creds,
            cache_discovery=False,
        )

    @property
    def service(self) -> "googleapiclient.discovery.Resource":
        if self._service is None or self._expiring():
            self._connect()
        return self._service

    def _expiring(self) -> bool:
        expiry = getattr(self.creds, "expiry", None)
        if expiry is None:
            return False
        margin = timedelta(seconds=REFRESH_MARGIN_SECONDS)
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        return expiry < now + margin

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    def list_messages(self, query: str, max_results: int) -> list[dict]:
        """Return ``{"id", "threadId"}`` refs for messages matching ``query``."""
        try:
            response = self.service.users().messages().list(
                userId="me", q=query, maxResults=max_results,
            ).execute()
        except Exception as e:
            raise GmailError(f"Failed to list messages: {e}") from e
        return response.get("messages", [])

    def get_message(self, message_id: str) -> dict:
        try:
            return self.service.users().messages().get(
                userId="me", id=message_id, format="full",
            ).execute()
        except Exception as e:
            raise GmailError(f"Failed to get message {message_id}: {e}") from e

    def get_raw_message(self, message_id: str) -> bytes:
        """Fetch the original RFC 822 bytes of a message."""
        try:
            response = self.service.users().messages().get(
                userId="me", id=message_id, format="raw",
            ).execute()
        except Exception as e:
            raise GmailError(f"Failed to get raw message {message_id}: {e}") from e

        raw = response.get("raw")
        if not raw:
            raise GmailError("Raw message data is empty")
        return _decode_base64url(raw)

    def get_attachment(self, message_id: str, attachment_id: str) -> bytes:
        try:
            response = self.service.users().messages().attachments().get(
                userId="me", messageId=message_id, id=attachment_id,
            ).execute()
        except Exception as e:
            raise GmailError(
                f"Failed to get attachment {attachment_id} of {message_id}: {e}"
            ) from e

        data = response.get("data")
        if not data:
            raise GmailError("Attachment data is empty")
        return _decode_base64url(data)

    # -------------------------------------------------------------------------
    # Labels
    # -------------------------------------------------------------------------

    def ensure_label(self, label_name: str) -> str:
        """Return the id of ``label_name``, creating the label if needed."""
        try:
            res = self.service.users().labels().list(userId="me").execute()
        except Exception as e:
            raise GmailError(f"Failed to list labels: {e}") from e

        wanted = label_name.lower()
        for lbl in res.get("labels", []):
            if lbl.get("name", "").lower() == wanted and lbl.get("id"):
                return self._remember_label(label_name, lbl["id"])

        body = {
            "name": label_name,
            "labelListVisibility": "labelShow",
            "messageListVisibility": "show",
        }
        try:
            created = self.service.users().labels().create(
                userId="me", body=body,
            ).execute()
        except Exception as e:
            raise GmailError(f"Failed to create label {label_name}: {e}") from e

        if not created.get("id"):
            raise GmailError(f"Failed to create label {label_name}")
        logger.info(f"[{self.account_name}] Created Gmail label '{label_name}'")
        return self._remember_label(label_name, created["id"])

    def _remember_label(self, label_name: str, label_id: str) -> str:
        if label_name == SLACK_DONE_LABEL:
            self._done_label_id = label_id
        return label_id

    def add_label(self, message_id: str, label_name: str) -> None:
        label_id = self._done_label_id
        if label_id is None or label_name != SLACK_DONE_LABEL:
            label_id = self.ensure_label(label_name)

        try:
            self.service.users().messages().modify(
                userId="me", id=message_id,
                body={"addLabelIds": [label_id]},
            ).execute()
        except Exception as e:
            raise GmailError(
                f"Failed to add label {label_name} to {message_id}: {e}"
            ) from e


def _decode_base64url(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
