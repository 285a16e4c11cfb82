import sys

from gmail_slack_forwarder.cli import main

sys.exit(main())
