"""Unified exception hierarchy for gmail-slack-forwarder."""


class ForwarderError(Exception):
    """Base exception for all forwarder errors."""


class ConfigurationError(ForwarderError):
    """Missing or malformed configuration or OAuth client credentials."""


class AuthorizationError(ForwarderError):
    """OAuth authorization failure, timeout, or callback port conflict."""


# Providers
class ProviderError(ForwarderError):
    """Base exception for failures reported by an external API."""


class GmailError(ProviderError):
    """A Gmail API call failed."""


class SlackError(ProviderError):
    """A Slack Web API call failed."""

    def __init__(self, message: str, slack_error: str | None = None):
        super().__init__(message)
        self.slack_error = slack_error


class TransientProviderError(ProviderError):
    """Network or rate-limit failure that is expected to clear on its own."""


class PermanentProcessingError(ForwarderError):
    """A message could not be processed because of its content or shape."""


# Storage
class StorageError(ForwarderError):
    """The dedup store could not be read or written."""


_RETRYABLE_PATTERNS = (
    "econnreset",
    "etimedout",
    "econnrefused",
    "connection reset",
    "timed out",
    "timeout",
    "rate_limited",
    "ratelimited",
    "rate limit",
    "service_unavailable",
    "service unavailable",
    "internal_error",
    "network",
    "socket hang up",
)


def is_retryable_error(error: BaseException) -> bool:
    """Guess whether an error is transient from its type and message.

    Used only to pick a log level. Every failed message is retried on the
    next poll cycle regardless of the answer.
    """
    if isinstance(error, TransientProviderError):
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in _RETRYABLE_PATTERNS)
