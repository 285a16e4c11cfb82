"""Forwards new Gmail messages from one or more accounts into a Slack channel."""

__version__ = "0.1.0"
