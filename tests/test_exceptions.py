"""Tests for exception hierarchy."""

from gmail_slack_forwarder.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ForwarderError,
    GmailError,
    PermanentProcessingError,
    ProviderError,
    SlackError,
    StorageError,
    TransientProviderError,
    is_retryable_error,
)


def test_all_inherit_from_base():
    for exc_class in [
        ConfigurationError, AuthorizationError,
        ProviderError, GmailError, SlackError, TransientProviderError,
        PermanentProcessingError,
        StorageError,
    ]:
        assert issubclass(exc_class, ForwarderError)


def test_provider_hierarchy():
    assert issubclass(GmailError, ProviderError)
    assert issubclass(SlackError, ProviderError)
    assert issubclass(TransientProviderError, ProviderError)
    assert not issubclass(StorageError, ProviderError)


def test_slack_error_carries_code():
    err = SlackError("Slack chat.postMessage failed: channel_not_found", slack_error="channel_not_found")
    assert err.slack_error == "channel_not_found"
    assert SlackError("plain").slack_error is None


def test_transient_errors_are_retryable():
    assert is_retryable_error(TransientProviderError("anything"))


def test_retryable_by_message():
    assert is_retryable_error(GmailError("Failed to list messages: Connection reset by peer"))
    assert is_retryable_error(Exception("ETIMEDOUT"))
    assert is_retryable_error(SlackError("Slack chat.postMessage failed: ratelimited"))


def test_not_retryable():
    assert not is_retryable_error(SlackError("Slack chat.postMessage failed: channel_not_found"))
    assert not is_retryable_error(PermanentProcessingError("Gmail message has no id"))
