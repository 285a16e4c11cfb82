"""OAuth2 token lifecycle for Gmail accounts: load, refresh, authorize."""

from __future__ import annotations

import errno
import json
import logging
import os
import time
import webbrowser
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from gmail_slack_forwarder.exceptions import AuthorizationError, ConfigurationError
from gmail_slack_forwarder.gmail.models import OAuthToken

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.modify",
]

DEFAULT_REDIRECT_PORT = int(os.environ.get("OAUTH_REDIRECT_PORT", "3333"))
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Refresh when the access token expires within this many seconds; not below
# google-auth's in-memory refresh threshold (3m45s).
REFRESH_MARGIN_SECONDS = 5 * 60
AUTHORIZATION_TIMEOUT_SECONDS = 5 * 60

_SUCCESS_PAGE = b"""<html>
  <body style="font-family: sans-serif; text-align: center; padding: 50px;">
    <h1>Authorization Successful!</h1>
    <p>You can close this window and return to the terminal.</p>
  </body>
</html>
"""


class AuthManager:
    """Manages OAuth2 credentials for multiple Gmail accounts.

    One client-secrets file is shared by every account; each account keeps
    its own token JSON.

    Args:
        credentials_path: Path to the Google Cloud client secrets JSON
            (desktop "installed" or "web" application type).
        redirect_port: Local port for the authorization callback.
        scopes: OAuth2 scopes to request.
    """

    def __init__(
        self,
        credentials_path: Path | str,
        redirect_port: int = DEFAULT_REDIRECT_PORT,
        scopes: list[str] | None = None,
    ):
        self.credentials_path = Path(credentials_path)
        self.redirect_port = redirect_port
        self.scopes = scopes or list(SCOPES)
        self._client_config = self._load_client_config()

    @property
    def redirect_uri(self) -> str:
        return f"http://localhost:{self.redirect_port}"

    def _load_client_config(self) -> dict:
        if not self.credentials_path.exists():
            raise ConfigurationError(
                f"Credentials file not found: {self.credentials_path}. "
                "Download it from Google Cloud Console and place it there."
            )
        try:
            data = json.loads(self.credentials_path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            raise ConfigurationError(
                f"Cannot read credentials file {self.credentials_path}: {e}"
            ) from e

        client = data.get("installed") or data.get("web")
        if not client:
            raise ConfigurationError(
                "Invalid credentials file: missing installed or web configuration"
            )
        return client

    # ---- Token persistence ----

    def load_token(self, token_path: Path | str) -> OAuthToken | None:
        token_path = Path(token_path)
        if not token_path.exists():
            return None
        return OAuthToken.from_dict(json.loads(token_path.read_text()))

    def save_token(self, token_path: Path | str, token: OAuthToken) -> None:
        token_path = Path(token_path)
        token_path.parent.mkdir(parents=True, exist_ok=True)
        token_path.write_text(json.dumps(token.to_dict(), indent=2))

    # ---- Credentials ----

    def to_credentials(self, token: OAuthToken) -> Credentials:
        """Build google-auth credentials for the given token."""
        expiry = None
        if token.expiry_date:
            # google-auth compares against naive UTC datetimes.
            expiry = datetime.fromtimestamp(
                token.expiry_date / 1000, tz=timezone.utc
            ).replace(tzinfo=None)

        return Credentials(
            token=token.access_token,
            refresh_token=token.refresh_token,
            token_uri=self._client_config.get("token_uri", DEFAULT_TOKEN_URI),
            client_id=self._client_config["client_id"],
            client_secret=self._client_config["client_secret"],
            scopes=token.scope.split() if token.scope else self.scopes,
            expiry=expiry,
        )

    def refresh_token(self, token: OAuthToken) -> OAuthToken:
        """Exchange the refresh token for a new access token."""
        creds = self.to_credentials(token)
        try:
            creds.refresh(Request())
        except Exception as e:
            raise AuthorizationError(f"Failed to refresh access token: {e}") from e
        return _token_from_credentials(creds, previous=token)

    def get_authenticated_client(self, token_path: Path | str) -> Credentials:
        """Load credentials for an account, refreshing them if about to expire.

        A refreshed token is written back to ``token_path`` before returning.
        """
        token = self.load_token(token_path)
        if token is None:
            raise AuthorizationError(
                f"Token not found at {token_path}. "
                "Run 'gmail-slack-forwarder setup --account <name>' first."
            )

        if token.expires_within(REFRESH_MARGIN_SECONDS):
            logger.info(f"Refreshing access token stored at {token_path}")
            token = self.refresh_token(token)
            self.save_token(token_path, token)

        return self.to_credentials(token)

    # ---- Interactive authorization ----

    def authenticate(
        self,
        account_name: str,
        token_path: Path | str,
        timeout: float = AUTHORIZATION_TIMEOUT_SECONDS,
        open_browser: bool = False,
    ) -> OAuthToken:
        """Run the interactive OAuth2 flow for one account and persist the token.

        Prints the authorization URL, then blocks until the local callback
        receives a ``code`` or an ``error``, or until ``timeout`` seconds pass.
        """
        flow = self._build_flow()
        auth_url, _ = flow.authorization_url(access_type="offline", prompt="consent")

        server = self._open_callback_server()
        try:
            print(f"\nAuthorization required for account: {account_name}")
            print("\nPlease visit this URL to authorize the application:\n")
            print(auth_url)
            print("\nWaiting for authorization...")
            if open_browser:
                webbrowser.open(auth_url)

            code = self._wait_for_authorization_code(server, timeout)
            token = self._exchange_code(flow, code)
            self.save_token(token_path, token)
        finally:
            server.server_close()

        print(f"\nToken saved to: {token_path}")
        return token

    def _build_flow(self) -> Flow:
        return Flow.from_client_config(
            {"installed": self._client_config},
            scopes=self.scopes,
            redirect_uri=self.redirect_uri,
        )

    def _open_callback_server(self) -> _CallbackServer:
        try:
            server = _CallbackServer(("localhost", self.redirect_port), _CallbackHandler)
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                raise AuthorizationError(
                    f"Port {self.redirect_port} is already in use. "
                    "Please close any other applications using this port."
                ) from e
            raise AuthorizationError(f"Cannot start callback listener: {e}") from e
        logger.info(f"Listening for authorization callback on port {self.redirect_port}")
        return server

    def _wait_for_authorization_code(self, server: _CallbackServer, timeout: float) -> str:
        deadline = time.monotonic() + timeout
        while server.auth_code is None and server.auth_error is None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise AuthorizationError("Authorization timed out")
            server.timeout = remaining
            server.handle_request()

        if server.auth_error is not None:
            raise AuthorizationError(f"Authorization failed: {server.auth_error}")
        return server.auth_code

    def _exchange_code(self, flow: Flow, code: str) -> OAuthToken:
        try:
            flow.fetch_token(code=code)
        except Exception as e:
            raise AuthorizationError(f"Token exchange failed: {e}") from e

        creds = flow.credentials
        if not creds.token or not creds.refresh_token:
            raise AuthorizationError("Failed to get tokens from authorization code")
        return _token_from_credentials(creds)


def _token_from_credentials(
    creds: Credentials,
    previous: OAuthToken | None = None,
) -> OAuthToken:
    if creds.expiry:
        expiry_ms = int(creds.expiry.replace(tzinfo=timezone.utc).timestamp() * 1000)
    else:
        expiry_ms = int((time.time() + 3600) * 1000)

    scopes = creds.granted_scopes or creds.scopes
    return OAuthToken(
        access_token=creds.token,
        refresh_token=creds.refresh_token or (previous.refresh_token if previous else ""),
        scope=" ".join(scopes) if scopes else (previous.scope if previous else " ".join(SCOPES)),
        token_type=previous.token_type if previous else "Bearer",
        expiry_date=expiry_ms,
    )


class _CallbackServer(HTTPServer):
    """Single-use HTTP listener that captures the OAuth redirect."""

    def __init__(self, server_address, handler_class):
        super().__init__(server_address, handler_class)
        self.auth_code: str | None = None
        self.auth_error: str | None = None


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer

    def setup(self) -> None:
        # A connection that never sends a request must not outlive the deadline.
        self.timeout = self.server.timeout
        super().setup()

    def do_GET(self) -> None:
        params = parse_qs(urlparse(self.path).query)
        error = params.get("error", [None])[0]
        code = params.get("code", [None])[0]

        if error:
            self.server.auth_error = error
            self._respond(400, f"Authorization failed: {error}".encode(), "text/plain")
        elif code:
            self.server.auth_code = code
            self._respond(200, _SUCCESS_PAGE, "text/html")
        else:
            self._respond(400, b"Missing authorization code", "text/plain")

    def _respond(self, status: int, body: bytes, content_type: str) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args) -> None:
        logger.debug(f"OAuth callback: {format % args}")
