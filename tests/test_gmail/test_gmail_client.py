"""Tests for the per-account Gmail client."""

import base64
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from gmail_slack_forwarder.exceptions import AuthorizationError, GmailError
from gmail_slack_forwarder.gmail.client import SLACK_DONE_LABEL, GmailClient


def _creds(expiry=None):
    creds = MagicMock()
    creds.expiry = expiry
    return creds


@pytest.fixture
def gmail_client(tmp_path):
    mock_service = MagicMock()
    mock_service.users().labels().list().execute.return_value = {
        "labels": [{"id": "Label_7", "name": "slack_done"}]
    }
    auth = MagicMock()
    auth.get_authenticated_client.return_value = _creds()
    with patch("gmail_slack_forwarder.gmail.client.build", return_value=mock_service) as mock_build:
        client = GmailClient(auth, tmp_path / "work.json", "work")
        client.initialize()
        yield client, mock_service, auth, mock_build


def test_initialize_uses_existing_label(gmail_client):
    client, service, auth, mock_build = gmail_client
    auth.get_authenticated_client.assert_called_once_with(client.token_path)
    assert mock_build.call_args.kwargs["cache_discovery"] is False
    service.users().labels().create.assert_not_called()
    assert client._done_label_id == "Label_7"


def test_initialize_creates_missing_label(tmp_path):
    service = MagicMock()
    service.users().labels().list().execute.return_value = {
        "labels": [{"id": "INBOX", "name": "INBOX"}]
    }
    service.users().labels().create().execute.return_value = {"id": "Label_new"}
    auth = MagicMock()
    auth.get_authenticated_client.return_value = _creds()

    with patch("gmail_slack_forwarder.gmail.client.build", return_value=service):
        client = GmailClient(auth, tmp_path / "work.json")
        client.initialize()

    assert client.account_name == "work"
    assert client._done_label_id == "Label_new"
    service.users().labels().create.assert_called_with(
        userId="me",
        body={
            "name": SLACK_DONE_LABEL,
            "labelListVisibility": "labelShow",
            "messageListVisibility": "show",
        },
    )


def test_label_match_is_case_insensitive(gmail_client):
    client, service, _, _ = gmail_client
    service.users().labels().list().execute.return_value = {
        "labels": [{"id": "Label_9", "name": "Slack_Done"}]
    }
    assert client.ensure_label("slack_done") == "Label_9"


def test_initialize_without_token(tmp_path):
    auth = MagicMock()
    auth.get_authenticated_client.side_effect = AuthorizationError("Token not found")
    client = GmailClient(auth, tmp_path / "work.json", "work")
    with pytest.raises(AuthorizationError):
        client.initialize()


def test_list_messages(gmail_client):
    client, service, _, _ = gmail_client
    service.users().messages().list().execute.return_value = {
        "messages": [{"id": "m1", "threadId": "t1"}, {"id": "m2", "threadId": "t2"}]
    }
    refs = client.list_messages("in:inbox -label:slack_done", 20)
    assert [r["id"] for r in refs] == ["m1", "m2"]
    service.users().messages().list.assert_called_with(
        userId="me", q="in:inbox -label:slack_done", maxResults=20,
    )


def test_list_messages_empty(gmail_client):
    client, service, _, _ = gmail_client
    service.users().messages().list().execute.return_value = {"resultSizeEstimate": 0}
    assert client.list_messages("in:inbox", 5) == []


def test_list_messages_error(gmail_client):
    client, service, _, _ = gmail_client
    service.users().messages().list().execute.side_effect = Exception("API error")
    with pytest.raises(GmailError, match="Failed to list messages"):
        client.list_messages("in:inbox", 5)


def test_get_message(gmail_client):
    client, service, _, _ = gmail_client
    service.users().messages().get().execute.return_value = {"id": "m1"}
    assert client.get_message("m1") == {"id": "m1"}
    service.users().messages().get.assert_called_with(userId="me", id="m1", format="full")


def test_get_raw_message(gmail_client):
    client, service, _, _ = gmail_client
    raw = base64.urlsafe_b64encode(b"From: a@example.com\r\n\r\nbody").decode().rstrip("=")
    service.users().messages().get().execute.return_value = {"raw": raw}
    assert client.get_raw_message("m1") == b"From: a@example.com\r\n\r\nbody"


def test_get_raw_message_empty(gmail_client):
    client, service, _, _ = gmail_client
    service.users().messages().get().execute.return_value = {}
    with pytest.raises(GmailError, match="Raw message data is empty"):
        client.get_raw_message("m1")


def test_get_attachment(gmail_client):
    client, service, _, _ = gmail_client
    data = base64.urlsafe_b64encode(b"%PDF-1.4").decode()
    service.users().messages().attachments().get().execute.return_value = {"data": data}
    assert client.get_attachment("m1", "att1") == b"%PDF-1.4"


def test_get_attachment_empty(gmail_client):
    client, service, _, _ = gmail_client
    service.users().messages().attachments().get().execute.return_value = {"size": 0}
    with pytest.raises(GmailError, match="Attachment data is empty"):
        client.get_attachment("m1", "att1")


def test_add_label_uses_cached_id(gmail_client):
    client, service, _, _ = gmail_client
    service.users().labels().list.reset_mock()
    client.add_label("m1", SLACK_DONE_LABEL)
    service.users().labels().list.assert_not_called()
    service.users().messages().modify.assert_called_with(
        userId="me", id="m1", body={"addLabelIds": ["Label_7"]},
    )


def test_add_label_error(gmail_client):
    client, service, _, _ = gmail_client
    service.users().messages().modify().execute.side_effect = Exception("403")
    with pytest.raises(GmailError, match="Failed to add label"):
        client.add_label("m1", SLACK_DONE_LABEL)


def test_service_reconnects_when_credentials_expire(gmail_client):
    client, _, auth, mock_build = gmail_client
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    client.creds = _creds(expiry=now + timedelta(seconds=10))
    auth.get_authenticated_client.return_value = _creds(expiry=now + timedelta(hours=1))

    client.list_messages("in:inbox", 1)

    assert auth.get_authenticated_client.call_count == 2
    assert mock_build.call_count == 2


def test_service_reconnects_within_refresh_margin(gmail_client):
    client, _, auth, _ = gmail_client
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    client.creds = _creds(expiry=now + timedelta(minutes=4))
    auth.get_authenticated_client.return_value = _creds(expiry=now + timedelta(hours=1))

    client.list_messages("in:inbox", 1)
    client.list_messages("in:inbox", 1)

    assert auth.get_authenticated_client.call_count == 2
