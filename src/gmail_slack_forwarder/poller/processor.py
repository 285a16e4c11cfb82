"""Per-message forwarding pipeline: Gmail → Slack → dedup store → Gmail label."""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Callable

from gmail_slack_forwarder.config import Account, ForwarderConfig
from gmail_slack_forwarder.exceptions import ForwarderError, is_retryable_error
from gmail_slack_forwarder.gmail.auth import AuthManager
from gmail_slack_forwarder.gmail.client import SLACK_DONE_LABEL, GmailClient
from gmail_slack_forwarder.gmail.models import ParsedEmail
from gmail_slack_forwarder.gmail.parser import parse_message, split_body
from gmail_slack_forwarder.slack.client import SlackClient
from gmail_slack_forwarder.slack.formatter import SlackFormatter
from gmail_slack_forwarder.slack.models import FileUpload
from gmail_slack_forwarder.storage.dedup import DedupStore

_UNSAFE_FILENAME_CHARS = re.compile(r'[/\\?%*:|"<>]')


class MessageOutcome(enum.Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class ProcessResult:
    """Counts for one account in one poll cycle."""

    account_name: str
    processed: int = 0
    skipped: int = 0
    errors: int = 0

    def record(self, outcome: MessageOutcome) -> None:
        if outcome is MessageOutcome.PROCESSED:
            self.processed += 1
        elif outcome is MessageOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1


def eml_filename(subject: str) -> str:
    """Filesystem-safe ``.eml`` name derived from a subject line."""
    return f"{_UNSAFE_FILENAME_CHARS.sub('-', subject)[:50]}.eml"


class MessageProcessor:
    """Forwards new mail from every configured account to Slack.

    Accounts and messages are handled strictly one at a time. The dedup
    record is the commit point: it is written only after the primary Slack
    post succeeded, so anything that fails earlier is retried on the next
    poll.

    Args:
        config: Validated forwarder config.
        auth: Shared OAuth manager used to build each account's client.
        slack_client: Destination for posts and uploads.
        storage: Dedup store.
        formatter: Builds the Slack messages.
        client_factory: Builds a :class:`GmailClient` for an account.
        logger: Logger to report to; defaults to this module's logger.
    """

    def __init__(
        self,
        config: ForwarderConfig,
        auth: AuthManager,
        slack_client: SlackClient,
        storage: DedupStore,
        formatter: SlackFormatter,
        client_factory: Callable[..., GmailClient] = GmailClient,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.auth = auth
        self.slack = slack_client
        self.storage = storage
        self.formatter = formatter
        self._client_factory = client_factory
        self.logger = logger or logging.getLogger(__name__)
        self.gmail_clients: dict[str, GmailClient] = {}

    def initialize(self) -> None:
        """Connect every account; fails only if none could be connected."""
        for account in self.config.accounts:
            try:
                client = self._client_factory(self.auth, account.token_path, account.name)
                client.initialize()
            except Exception as e:
                self.logger.warning(
                    f"[{account.name}] Failed to initialize Gmail client "
                    f"(token may be missing), skipping account: {e}"
                )
                continue
            self.gmail_clients[account.name] = client
            self.logger.info(f"[{account.name}] Gmail client initialized")

        if not self.gmail_clients:
            raise ForwarderError(
                "No Gmail accounts could be initialized. "
                "Please run OAuth setup for at least one account."
            )

    def process_all_accounts(self) -> list[ProcessResult]:
        return [self.process_account(account) for account in self.config.accounts]

    def process_account(self, account: Account) -> ProcessResult:
        result = ProcessResult(account_name=account.name)

        client = self.gmail_clients.get(account.name)
        if client is None:
            self.logger.error(f"[{account.name}] Gmail client not initialized")
            result.errors += 1
            return result

        try:
            refs = client.list_messages(
                self.config.gmail_query, self.config.max_messages_per_poll,
            )
        except Exception as e:
            self.logger.error(f"[{account.name}] Error listing messages: {e}")
            result.errors += 1
            return result

        if refs:
            self.logger.info(f"[{account.name}] Found {len(refs)} messages to process")

        for ref in refs:
            result.record(self.process_message(account, client, ref["id"]))

        return result

    def process_message(
        self,
        account: Account,
        client: GmailClient,
        message_id: str,
    ) -> MessageOutcome:
        if self.storage.is_processed(account.name, message_id):
            self.logger.debug(f"[{account.name}] {message_id} already processed")
            try:
                client.add_label(message_id, SLACK_DONE_LABEL)
            except Exception as e:
                self.logger.debug(f"[{account.name}] Ignoring label error for {message_id}: {e}")
            return MessageOutcome.SKIPPED

        channel_id = self.config.slack.post_channel_id
        try:
            email = parse_message(client.get_message(message_id))
            self.logger.info(
                f"[{account.name}] Processing {message_id}: "
                f"'{email.subject}' from {email.sender}"
            )

            formatted = self.formatter.format_email(email, account)
            post = self.slack.post_message(channel_id, formatted.blocks, formatted.text)
        except Exception as e:
            if is_retryable_error(e):
                self.logger.warning(
                    f"[{account.name}] Retryable error on {message_id}, "
                    f"will retry next poll: {e}"
                )
            else:
                self.logger.error(f"[{account.name}] Error processing {message_id}: {e}")
            return MessageOutcome.ERROR

        if not post.ok or not post.ts:
            self.logger.error(
                f"[{account.name}] Failed to post {message_id} to Slack: {post.error}"
            )
            return MessageOutcome.ERROR

        if len(email.body) > self.config.format.body_max_chars:
            self._handle_long_body(account, client, email, post.ts)

        if self.config.attachments.enabled and email.attachments:
            self._upload_attachments(account, client, email, post.ts)

        self.storage.mark_processed(account.name, message_id, post.ts)

        try:
            client.add_label(message_id, SLACK_DONE_LABEL)
        except Exception as e:
            self.logger.warning(
                f"[{account.name}] Forwarded {message_id} but failed to add "
                f"'{SLACK_DONE_LABEL}' label: {e}"
            )

        self.logger.info(f"[{account.name}] Forwarded '{email.subject}' ({message_id})")
        return MessageOutcome.PROCESSED

    def _handle_long_body(
        self,
        account: Account,
        client: GmailClient,
        email: ParsedEmail,
        thread_ts: str,
    ) -> None:
        channel_id = self.config.slack.post_channel_id

        if self.config.format.split_long_body_into_thread:
            chunks = list(split_body(email.body, self.config.format.body_max_chars))
            for index, chunk in enumerate(chunks[1:], start=2):
                continuation = self.formatter.format_continuation(chunk, index, len(chunks))
                try:
                    reply = self.slack.post_thread_reply(
                        channel_id, thread_ts, continuation.blocks, continuation.text,
                    )
                except Exception as e:
                    self.logger.warning(
                        f"[{account.name}] Failed to post continuation "
                        f"{index}/{len(chunks)} of {email.message_id}: {e}"
                    )
                    break
                if not reply.ok:
                    self.logger.warning(
                        f"[{account.name}] Slack rejected continuation "
                        f"{index}/{len(chunks)} of {email.message_id}: {reply.error}"
                    )
                    break

        filename = eml_filename(email.subject)
        try:
            raw = client.get_raw_message(email.message_id)
            self.slack.upload_file(FileUpload(
                channel_id=channel_id,
                thread_ts=thread_ts,
                filename=filename,
                content=raw,
                mime_type="message/rfc822",
            ))
        except Exception as e:
            self.logger.warning(
                f"[{account.name}] Failed to upload {filename} for {email.message_id}: {e}"
            )
            return
        self.logger.info(f"[{account.name}] Uploaded {filename} (body was too long)")

    def _upload_attachments(
        self,
        account: Account,
        client: GmailClient,
        email: ParsedEmail,
        thread_ts: str,
    ) -> None:
        channel_id = self.config.slack.post_channel_id
        threaded = self.config.attachments.upload_as_thread_reply

        for attachment in email.attachments:
            try:
                content = client.get_attachment(email.message_id, attachment.attachment_id)
                self.slack.upload_file(FileUpload(
                    channel_id=channel_id,
                    thread_ts=thread_ts if threaded else None,
                    filename=attachment.filename,
                    content=content,
                    mime_type=attachment.mime_type,
                ))
            except Exception as e:
                self.logger.warning(
                    f"[{account.name}] Failed to upload attachment "
                    f"{attachment.filename}: {e}"
                )
                continue
            self.logger.info(f"[{account.name}] Uploaded attachment {attachment.filename}")
