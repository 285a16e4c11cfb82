"""Tests for the poll scheduler."""

import threading
from unittest.mock import MagicMock

import pytest

from gmail_slack_forwarder.exceptions import GmailError, StorageError
from gmail_slack_forwarder.poller.processor import ProcessResult
from gmail_slack_forwarder.poller.scheduler import Poller, PollerState


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def processor():
    processor = MagicMock()
    processor.process_all_accounts.return_value = [ProcessResult("work", processed=1)]
    return processor


@pytest.fixture
def storage():
    storage = MagicMock()
    storage.delete_old_records.return_value = 0
    return storage


@pytest.fixture
def poller(processor, storage, clock):
    return Poller(
        processor, storage,
        poll_interval_seconds=30,
        retention_days=7,
        cleanup_interval_seconds=3600,
        clock=clock,
    )


def test_initial_state(poller):
    assert poller.state is PollerState.IDLE
    assert poller.is_running is False
    assert poller.next_deadline() is None


def test_start_cleans_up_and_polls_immediately(poller, processor, storage, clock):
    poller.start()

    storage.delete_old_records.assert_called_once_with(7)
    processor.process_all_accounts.assert_called_once()
    assert poller.state is PollerState.SCHEDULED
    assert poller.next_deadline() == clock.now + 30


def test_start_twice_is_noop(poller, processor):
    poller.start()
    poller.start()
    assert processor.process_all_accounts.call_count == 1


def test_run_pending_before_deadline_does_nothing(poller, processor, clock):
    poller.start()
    clock.advance(29)
    poller.run_pending()
    assert processor.process_all_accounts.call_count == 1


def test_next_poll_is_chained_after_completion(poller, processor, clock):
    def slow_poll():
        clock.advance(50)
        return []

    poller.start()
    processor.process_all_accounts.side_effect = slow_poll
    clock.advance(30)
    poller.run_pending()

    assert processor.process_all_accounts.call_count == 2
    assert poller.next_deadline() == clock.now + 30


def test_polls_never_overlap(poller, processor, clock):
    states = []

    def record_state():
        states.append(poller.state)
        return []

    processor.process_all_accounts.side_effect = record_state
    poller.start()
    for _ in range(5):
        clock.advance(30)
        poller.run_pending()

    assert states == [PollerState.RUNNING] * 6
    assert poller.state is PollerState.SCHEDULED


def test_failing_poll_keeps_schedule(poller, processor, clock):
    processor.process_all_accounts.side_effect = GmailError("boom")
    poller.start()

    assert poller.state is PollerState.SCHEDULED
    clock.advance(30)
    poller.run_pending()
    assert processor.process_all_accounts.call_count == 2
    assert poller.is_running is True


def test_storage_error_escapes_poll(poller, processor):
    processor.process_all_accounts.side_effect = StorageError("disk full")
    with pytest.raises(StorageError):
        poller.start()


def test_cleanup_runs_hourly(poller, storage, clock):
    poller.start()
    for _ in range(120):
        clock.advance(30)
        poller.run_pending()

    # one at start plus one per elapsed hour
    assert storage.delete_old_records.call_count == 2


def test_cleanup_failure_is_not_fatal(poller, storage, processor):
    storage.delete_old_records.side_effect = StorageError("locked")
    poller.start()
    assert processor.process_all_accounts.call_count == 1
    assert poller.is_running is True


def test_stop_clears_timers(poller, processor, clock):
    poller.start()
    poller.stop()

    assert poller.state is PollerState.IDLE
    assert poller.next_deadline() is None
    clock.advance(3600)
    poller.run_pending()
    assert processor.process_all_accounts.call_count == 1


def test_stop_is_idempotent(poller):
    poller.stop()
    poller.start()
    poller.stop()
    poller.stop()
    assert poller.is_running is False


def test_stop_during_poll_does_not_reschedule(poller, processor, clock):
    def stop_midway():
        poller.stop()
        return []

    poller.start()
    processor.process_all_accounts.side_effect = stop_midway
    clock.advance(30)
    poller.run_pending()

    assert poller.state is PollerState.IDLE
    assert poller.next_deadline() is None


def test_run_forever_returns_after_stop(processor, storage):
    poller = Poller(processor, storage, poll_interval_seconds=30, retention_days=7)
    poller.start()

    thread = threading.Thread(target=poller.run_forever)
    thread.start()
    poller.stop()
    thread.join(5)

    assert not thread.is_alive()
    assert processor.process_all_accounts.call_count == 1
