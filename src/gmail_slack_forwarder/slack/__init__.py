"""Slack side of the forwarder: Web API client and Block Kit formatting."""

from gmail_slack_forwarder.slack.client import SlackClient
from gmail_slack_forwarder.slack.formatter import SlackFormatter
from gmail_slack_forwarder.slack.models import FileUpload, FormattedMessage, SlackPostResult

__all__ = [
    "SlackClient",
    "SlackFormatter",
    "FileUpload",
    "FormattedMessage",
    "SlackPostResult",
]
