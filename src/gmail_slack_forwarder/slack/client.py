"""Slack Web API client: post messages, thread replies and file uploads."""

from __future__ import annotations

import json
import logging

import httpx

from gmail_slack_forwarder.exceptions import SlackError, TransientProviderError
from gmail_slack_forwarder.slack.models import FileUpload, SlackPostResult

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api/"


class SlackClient:
    """Minimal Slack Web API client over httpx.

    Transport failures, HTTP 429 and 5xx responses raise
    :class:`TransientProviderError`. API-level failures (``"ok": false``)
    on posts are returned in the :class:`SlackPostResult`; on uploads they
    raise :class:`SlackError`.

    Args:
        bot_token: Slack bot token (``xoxb-...``).
        timeout: Per-request timeout in seconds.
        http_client: Optional preconfigured ``httpx.Client`` (tests use a
            ``MockTransport``).
    """

    def __init__(
        self,
        bot_token: str,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ):
        if not bot_token:
            raise SlackError("Slack bot token is required.")
        self._token = bot_token
        self._client = http_client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SlackClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ---- Messages ----

    def post_message(
        self,
        channel_id: str,
        blocks: list[dict],
        text: str,
        thread_ts: str | None = None,
    ) -> SlackPostResult:
        payload: dict = {"channel": channel_id, "blocks": blocks, "text": text}
        if thread_ts:
            payload["thread_ts"] = thread_ts

        data = self._call("chat.postMessage", json=payload)
        return SlackPostResult(
            ok=bool(data.get("ok")),
            ts=data.get("ts"),
            channel=data.get("channel"),
            error=data.get("error"),
        )

    def post_thread_reply(
        self,
        channel_id: str,
        thread_ts: str,
        blocks: list[dict],
        text: str,
    ) -> SlackPostResult:
        return self.post_message(channel_id, blocks, text, thread_ts=thread_ts)

    # ---- Files ----

    def upload_file(self, upload: FileUpload) -> str:
        """Share a file into a channel (or thread). Returns the Slack file id.

        Uses the external upload flow: reserve an upload URL, send the bytes,
        then complete the upload against the target channel.
        """
        reserved = self._call(
            "files.getUploadURLExternal",
            data={"filename": upload.filename, "length": str(len(upload.content))},
        )
        self._check_ok("files.getUploadURLExternal", reserved)
        upload_url = reserved["upload_url"]
        file_id = reserved["file_id"]

        headers = {}
        if upload.mime_type:
            headers["Content-Type"] = upload.mime_type
        try:
            response = self._client.post(upload_url, content=upload.content, headers=headers)
        except httpx.HTTPError as e:
            raise TransientProviderError(f"Slack file upload network error: {e}") from e
        if response.status_code != 200:
            raise SlackError(
                f"Slack file upload failed with HTTP {response.status_code}"
            )

        complete: dict = {
            "files": json.dumps([{"id": file_id, "title": upload.filename}]),
            "channel_id": upload.channel_id,
        }
        if upload.thread_ts:
            complete["thread_ts"] = upload.thread_ts
        completed = self._call("files.completeUploadExternal", data=complete)
        self._check_ok("files.completeUploadExternal", completed)

        logger.debug(f"Uploaded {upload.filename} ({len(upload.content)} bytes) as {file_id}")
        return file_id

    # ---- Internals ----

    def _call(self, method: str, json: dict | None = None, data: dict | None = None) -> dict:
        try:
            response = self._client.post(
                SLACK_API_URL + method,
                json=json,
                data=data,
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"Slack {method} timeout: {e}") from e
        except httpx.HTTPError as e:
            raise TransientProviderError(f"Slack {method} network error: {e}") from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "?")
            raise TransientProviderError(
                f"Slack {method} rate_limited (retry after {retry_after}s)"
            )
        if response.status_code >= 500:
            raise TransientProviderError(
                f"Slack {method} service_unavailable (HTTP {response.status_code})"
            )
        if response.status_code != 200:
            raise SlackError(f"Slack {method} failed with HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise SlackError(f"Slack {method} returned invalid JSON: {e}") from e

    @staticmethod
    def _check_ok(method: str, data: dict) -> None:
        if not data.get("ok"):
            error = data.get("error", "unknown_error")
            raise SlackError(f"Slack {method} failed: {error}", slack_error=error)
