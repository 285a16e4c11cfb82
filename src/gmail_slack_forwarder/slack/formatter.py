"""Render parsed emails as Slack Block Kit messages."""

from __future__ import annotations

from datetime import datetime

from gmail_slack_forwarder.config import Account, FormatConfig
from gmail_slack_forwarder.gmail.models import ParsedEmail
from gmail_slack_forwarder.gmail.parser import truncate_body
from gmail_slack_forwarder.slack.models import FormattedMessage

# Slack rejects section text longer than this.
SECTION_TEXT_LIMIT = 3000
CONTINUATION_HEADROOM = 100

GMAIL_PERMALINK = "https://mail.google.com/mail/u/0/{query}#all/{message_id}"


def escape_slack_text(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def format_date(date: datetime) -> str:
    """Render as local ``YYYY-MM-DD HH:MM``."""
    return date.astimezone().strftime("%Y-%m-%d %H:%M")


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{round(size / 1024)}KB"
    return f"{size / (1024 * 1024):.1f}MB"


def gmail_permalink(message_id: str, account_name: str = "") -> str:
    query = f"?authuser={account_name}" if "@" in account_name else ""
    return GMAIL_PERMALINK.format(query=query, message_id=message_id)


def _section(text: str) -> dict:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _context(text: str) -> dict:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


class SlackFormatter:
    """Builds Slack messages for forwarded emails.

    Args:
        format_config: Rendering options from the ``format`` config section.
    """

    def __init__(self, format_config: FormatConfig):
        self.config = format_config

    def format_email(self, email: ParsedEmail, account: Account) -> FormattedMessage:
        blocks: list[dict] = []

        if self.config.include_account_header:
            blocks.append(_section(f":email: *[{escape_slack_text(account.display_name)}]*"))

        blocks.append(_section(f"*{escape_slack_text(email.subject)}*"))

        meta_lines = [
            f"From: {escape_slack_text(email.sender)}",
            f"To: {escape_slack_text(email.recipient)}",
            f"Date: {format_date(email.date)}",
        ]
        blocks.append(_context("\n".join(meta_lines)))
        blocks.append({"type": "divider"})

        # Escape before truncating so entity expansion cannot push the
        # rendered text past the limit.
        body = email.body or email.snippet or "(No content)"
        blocks.append(_section(truncate_body(escape_slack_text(body), self.config.body_max_chars)))

        if self.config.include_gmail_permalink:
            link = gmail_permalink(email.message_id, account.name)
            blocks.append(_context(f":link: <{link}|Open in Gmail>"))

        if email.attachments:
            listing = "\n".join(
                f":paperclip: {escape_slack_text(a.filename)} ({format_file_size(a.size)})"
                for a in email.attachments
            )
            blocks.append(_context(listing))

        return FormattedMessage(blocks=blocks, text=self._plain_text(email, account))

    def _plain_text(self, email: ParsedEmail, account: Account) -> str:
        lines = [
            f"[{account.display_name}]",
            f"Subject: {email.subject}",
            f"From: {email.sender}",
            f"To: {email.recipient}",
            f"Date: {format_date(email.date)}",
            "",
            email.snippet or "(No content)",
        ]
        if email.attachments:
            lines.append("")
            lines.append(f"Attachments: {', '.join(a.filename for a in email.attachments)}")
        return "\n".join(lines)

    def format_continuation(self, chunk: str, index: int, total: int) -> FormattedMessage:
        """Build the thread reply carrying body chunk ``index`` of ``total``."""
        label = f"Continuation ({index}/{total})"
        body = truncate_body(
            escape_slack_text(chunk), SECTION_TEXT_LIMIT - CONTINUATION_HEADROOM,
        )
        return FormattedMessage(
            blocks=[_context(f":page_facing_up: *{label}*"), _section(body)],
            text=f"{label}: {chunk[:100]}...",
        )
