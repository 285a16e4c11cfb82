"""Parse Gmail API message payloads into structured data."""

from __future__ import annotations

import base64
import binascii
import re
from datetime import datetime, timezone
from typing import Iterator

import dateutil.parser as dateparser
from bs4 import BeautifulSoup

from gmail_slack_forwarder.exceptions import PermanentProcessingError
from gmail_slack_forwarder.gmail.models import AttachmentInfo, ParsedEmail

NO_SUBJECT = "(No Subject)"
TRUNCATION_SUFFIX = "...(truncated)"


def parse_message(raw_message: dict) -> ParsedEmail:
    """Extract structured data from a Gmail API message (format=full).

    This is a pure parsing function, no network calls.
    """
    if not raw_message.get("id"):
        raise PermanentProcessingError("Gmail message has no id")

    payload = raw_message.get("payload") or {}
    headers = payload.get("headers")

    return ParsedEmail(
        message_id=raw_message["id"],
        thread_id=raw_message.get("threadId", ""),
        subject=get_header(headers, "Subject") or NO_SUBJECT,
        sender=get_header(headers, "From").strip(),
        recipient=get_header(headers, "To").strip(),
        date=parse_date(get_header(headers, "Date"), raw_message.get("internalDate")),
        body=extract_body(payload),
        attachments=tuple(extract_attachments(payload)),
        snippet=raw_message.get("snippet", ""),
    )


def get_header(headers: list[dict] | None, name: str) -> str:
    if not headers:
        return ""
    wanted = name.lower()
    for header in headers:
        if header.get("name", "").lower() == wanted:
            return header.get("value", "")
    return ""


def parse_date(date_header: str, internal_date: str | int | None = None) -> datetime:
    """Parse the Date header, falling back to Gmail's internalDate, then now.

    The result is always timezone-aware.
    """
    if date_header:
        try:
            parsed = dateparser.parse(date_header, fuzzy=True)
            return parsed if parsed.tzinfo else parsed.astimezone()
        except (ValueError, OverflowError):
            pass

    if internal_date:
        try:
            return datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            pass

    return datetime.now(timezone.utc)


def extract_body(part: dict | None) -> str:
    """Pick the best plain-text body from a MIME part tree.

    Preference at each level: the part's own text/plain data, then the first
    text/plain child, then the first text/html child (stripped), then the
    first multipart child that yields anything.
    """
    if not part:
        return ""

    mime_type = part.get("mimeType", "")
    children = part.get("parts") or []

    if _has_data(part):
        if mime_type == "text/plain":
            return _decode_body_data(part)
        if mime_type == "text/html" and not children:
            return strip_html(_decode_body_data(part))

    for child in children:
        if child.get("mimeType") == "text/plain" and _has_data(child):
            return _decode_body_data(child)

    for child in children:
        if child.get("mimeType") == "text/html" and _has_data(child):
            return strip_html(_decode_body_data(child))

    for child in children:
        if child.get("mimeType", "").startswith("multipart/"):
            text = extract_body(child)
            if text:
                return text

    return ""


def extract_attachments(part: dict | None) -> list[AttachmentInfo]:
    """Collect every part with a filename and an attachment id, at any depth."""
    if not part:
        return []

    attachments = []
    body = part.get("body") or {}
    if part.get("filename") and body.get("attachmentId"):
        attachments.append(
            AttachmentInfo(
                attachment_id=body["attachmentId"],
                filename=part["filename"],
                mime_type=part.get("mimeType") or "application/octet-stream",
                size=body.get("size") or 0,
            )
        )

    for child in part.get("parts") or []:
        attachments.extend(extract_attachments(child))

    return attachments


def strip_html(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()

    for br in soup.find_all("br"):
        br.replace_with("\n")
    for li in soup.find_all("li"):
        li.insert(0, "• ")
        li.append("\n")
    for p in soup.find_all("p"):
        p.append("\n\n")
    for div in soup.find_all("div"):
        div.append("\n")

    text = soup.get_text().replace("\xa0", " ")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def truncate_body(body: str, max_chars: int) -> str:
    """Shorten ``body`` to at most ``max_chars``, ending with the truncation suffix.

    Prefers a newline, then a space, as the cut point when either falls in
    the last 30% of the available window. A limit too small to hold the
    suffix hard-cuts the body instead.
    """
    if len(body) <= max_chars:
        return body
    if max_chars <= len(TRUNCATION_SUFFIX):
        return body[:max(max_chars, 0)]

    window = max_chars - len(TRUNCATION_SUFFIX)
    truncated = body[:window]
    threshold = window * 0.7

    last_newline = truncated.rfind("\n")
    if last_newline > threshold:
        return truncated[:last_newline].rstrip() + TRUNCATION_SUFFIX

    last_space = truncated.rfind(" ")
    if last_space > threshold:
        return truncated[:last_space] + TRUNCATION_SUFFIX

    return truncated + TRUNCATION_SUFFIX


def split_body(body: str, max_chars: int) -> Iterator[str]:
    """Yield chunks of ``body`` no longer than ``max_chars``.

    Cuts at a paragraph break, a newline or a space when one lies past the
    middle of the chunk, else hard-cuts. The boundary characters at a cut
    are consumed.
    """
    if max_chars < 1:
        raise ValueError("max_chars must be at least 1")

    remaining = body
    while len(remaining) > max_chars:
        chunk = remaining[:max_chars]
        threshold = max_chars * 0.5

        for separator in ("\n\n", "\n", " "):
            cut = chunk.rfind(separator)
            if cut > threshold:
                yield chunk[:cut]
                remaining = remaining[cut + len(separator):]
                break
        else:
            yield chunk
            remaining = remaining[max_chars:]

    yield remaining


def _has_data(part: dict) -> bool:
    return bool((part.get("body") or {}).get("data"))


def _decode_body_data(part: dict) -> str:
    data = (part.get("body") or {}).get("data", "")
    if not data:
        return ""
    try:
        padded = data + "=" * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""
