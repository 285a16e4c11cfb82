"""Command-line entry point for gmail-slack-forwarder."""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from gmail_slack_forwarder.config import ForwarderConfig, get_slack_bot_token, load_config
from gmail_slack_forwarder.exceptions import ForwarderError, StorageError
from gmail_slack_forwarder.gmail.auth import AuthManager
from gmail_slack_forwarder.logging_cfg import setup_logging
from gmail_slack_forwarder.poller.processor import MessageProcessor
from gmail_slack_forwarder.poller.scheduler import Poller
from gmail_slack_forwarder.slack.client import SlackClient
from gmail_slack_forwarder.slack.formatter import SlackFormatter
from gmail_slack_forwarder.storage.dedup import DedupStore

logger = logging.getLogger(__name__)


def run(config: ForwarderConfig) -> int:
    """Start the poller and block until SIGINT/SIGTERM."""
    auth = AuthManager(config.credentials_path, redirect_port=config.oauth.redirect_port)
    slack = SlackClient(get_slack_bot_token(config))
    storage = DedupStore(config.dedupe.sqlite_path)

    processor = MessageProcessor(
        config=config,
        auth=auth,
        slack_client=slack,
        storage=storage,
        formatter=SlackFormatter(config.format),
    )
    poller = Poller(
        processor=processor,
        storage=storage,
        poll_interval_seconds=config.poll_interval_seconds,
        retention_days=config.dedupe.retention_days,
    )

    def handle_signal(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        poller.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        processor.initialize()
        logger.info(
            f"Forwarding {len(processor.gmail_clients)} account(s) "
            f"to channel {config.slack.post_channel_id}"
        )
        poller.start()
        poller.run_forever()
    except StorageError as e:
        logger.critical(f"Dedup store failure, stopping: {e}")
        return 1
    finally:
        poller.stop()
        storage.close()
        slack.close()

    return 0


def setup(config: ForwarderConfig, account_name: str, open_browser: bool = False) -> int:
    """Authorize one configured account interactively."""
    account = config.get_account(account_name)
    if account is None:
        names = ", ".join(a.name for a in config.accounts)
        print(f"Error: account '{account_name}' not found in config (known: {names})")
        return 1

    auth = AuthManager(config.credentials_path, redirect_port=config.oauth.redirect_port)
    auth.authenticate(
        account.name,
        account.token_path,
        timeout=config.oauth.callback_timeout_seconds,
        open_browser=open_browser,
    )
    print(f"\nOAuth setup completed for account: {account.name}")
    return 0


def status(config: ForwarderConfig) -> int:
    """Print dedup store statistics."""
    with DedupStore(config.dedupe.sqlite_path) as storage:
        stats = storage.get_stats()

    print(f"Dedup store: {config.dedupe.sqlite_path}")
    print(f"Retention: {config.dedupe.retention_days} days")
    print(f"Total forwarded: {stats.total}")
    for account in config.accounts:
        print(f"  {account.name}: {stats.by_account.get(account.name, 0)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gmail-slack-forwarder",
        description="Forward new Gmail messages to a Slack channel",
    )
    parser.add_argument("--config", type=Path, help="Config file path (default: $CONFIG_PATH)")
    parser.add_argument("--log-file", type=Path, help="Also log to this rotating file")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Poll Gmail and forward to Slack until interrupted")

    setup_parser = subparsers.add_parser("setup", help="Authorize a Gmail account")
    setup_parser.add_argument("--account", required=True, help="Account name from config")
    setup_parser.add_argument(
        "--browser", action="store_true", help="Open the authorization URL in a browser",
    )

    subparsers.add_parser("status", help="Show dedup store statistics")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(args.config)
    except ForwarderError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, args.log_file)
    try:
        if args.command == "run":
            return run(config)
        if args.command == "setup":
            return setup(config, args.account, open_browser=args.browser)
        return status(config)
    except ForwarderError as e:
        logger.error(str(e))
        return 1
    finally:
        logging.shutdown()


if __name__ == "__main__":
    sys.exit(main())
