"""Persistent forwarder state."""

from gmail_slack_forwarder.storage.dedup import DedupStore, ProcessedMail, StoreStats

__all__ = ["DedupStore", "ProcessedMail", "StoreStats"]
