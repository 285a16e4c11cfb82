"""Gmail side of the forwarder: OAuth, mailbox client and MIME parsing.

Google client libraries are imported lazily. Use explicit imports:
    from gmail_slack_forwarder.gmail.client import GmailClient
    from gmail_slack_forwarder.gmail.auth import AuthManager
    from gmail_slack_forwarder.gmail.parser import parse_message
"""

from gmail_slack_forwarder.gmail.models import AttachmentInfo, OAuthToken, ParsedEmail


def __getattr__(name):
    """Lazy imports for classes that pull in the Google API stack."""
    if name == "GmailClient":
        from gmail_slack_forwarder.gmail.client import GmailClient
        return GmailClient
    if name == "AuthManager":
        from gmail_slack_forwarder.gmail.auth import AuthManager
        return AuthManager
    if name == "parse_message":
        from gmail_slack_forwarder.gmail.parser import parse_message
        return parse_message
    raise AttributeError(f"module 'gmail_slack_forwarder.gmail' has no attribute {name!r}")


__all__ = [
    "GmailClient",
    "AuthManager",
    "parse_message",
    "AttachmentInfo",
    "OAuthToken",
    "ParsedEmail",
]
