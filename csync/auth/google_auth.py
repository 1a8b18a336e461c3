"""
OAuth2 authentication module for csync.

Provides OAuth 2.0 authentication with support for:
- Any number of Google accounts, each with its own client secrets and token
- Automatic token refresh
- Local callback server or manual copy/paste consent flows
- Secure token storage (files are written with mode 600)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlparse

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow, WSGITimeoutError

from csync.utils.paths import resolve_config_dir

if TYPE_CHECKING:
    from csync.config.settings import AccountConfig

# OAuth2 scope required for Google Contacts access
SCOPES = ["https://www.googleapis.com/auth/contacts"]

# Default timeout for interactive authentication (seconds)
DEFAULT_AUTH_TIMEOUT = 180

AUTH_MODE_LOCAL = "local"
AUTH_MODE_MANUAL = "manual"
AUTH_MODES = (AUTH_MODE_LOCAL, AUTH_MODE_MANUAL)

LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when authentication fails or credentials are invalid."""

    pass


def extract_auth_code(response: str) -> str:
    """
    Extract the authorization code from what the user pasted.

    Accepts either the full URL the browser was redirected to or the bare
    code itself.

    Raises:
        AuthenticationError: If no code can be found
    """
    response = response.strip()
    if "code=" in response:
        query = urlparse(response).query or response.split("?", 1)[-1]
        codes = parse_qs(query).get("code")
        if codes:
            return codes[0]
    if not response or "=" in response or "/" in response:
        raise AuthenticationError("No authorization code found in the response")
    return response


def is_loopback_redirect(redirect_uri: str) -> bool:
    """Check whether a redirect URI points at the local machine."""
    return urlparse(redirect_uri).hostname in LOOPBACK_HOSTS


class CredentialProvider:
    """Obtains fresh credentials from the user for an OAuth flow."""

    def obtain(self, flow: InstalledAppFlow, account: str) -> Credentials:
        raise NotImplementedError


class LocalServerProvider(CredentialProvider):
    """Runs the consent flow through a temporary localhost callback server."""

    def __init__(self, timeout: int = DEFAULT_AUTH_TIMEOUT, open_browser: bool = True):
        self.timeout = timeout
        self.open_browser = open_browser

    def obtain(self, flow: InstalledAppFlow, account: str) -> Credentials:
        redirect_uris = flow.client_config.get("redirect_uris", [])
        if redirect_uris and not any(is_loopback_redirect(u) for u in redirect_uris):
            raise AuthenticationError(
                f"Client secrets for {account} have no localhost redirect URI; "
                "use --auth manual or a Desktop application client"
            )

        logger.info(f"Waiting up to {self.timeout}s for consent from {account}")
        try:
            return flow.run_local_server(
                host="localhost",
                port=0,
                open_browser=self.open_browser,
                timeout_seconds=self.timeout,
                login_hint=account,
            )
        except WSGITimeoutError as e:
            raise AuthenticationError(
                f"Timed out after {self.timeout}s waiting for consent from {account}"
            ) from e


class ManualProvider(CredentialProvider):
    """Prints the consent URL and reads back the redirected URL or code."""

    def __init__(
        self,
        prompt: Callable[[str], str] = input,
        echo: Callable[[str], object] = print,
    ):
        self.prompt = prompt
        self.echo = echo

    def obtain(self, flow: InstalledAppFlow, account: str) -> Credentials:
        redirect_uris = flow.client_config.get("redirect_uris") or ["http://localhost"]
        flow.redirect_uri = redirect_uris[0]
        url, _ = flow.authorization_url(
            access_type="offline", prompt="consent", login_hint=account
        )

        self.echo(f"Authorize {account} by visiting this URL:\n\n  {url}\n")
        self.echo(
            "After granting access the browser is redirected to a page that may "
            "fail to load. Copy its full address (or just the code) below."
        )
        code = extract_auth_code(self.prompt("Redirected URL or code: "))
        flow.fetch_token(code=code)
        creds: Credentials = flow.credentials
        return creds


class GoogleAuth:
    """
    OAuth2 authentication manager for the configured accounts.

    Each account has a client secrets file (keyfile) and a token file
    (credfile). Relative paths are resolved against the configuration
    directory.

    Usage:
        auth = GoogleAuth(config_dir, mode="manual")
        creds = auth.authenticate(account)

        # Cached credentials only, no user interaction
        creds = auth.get_credentials(account)
    """

    def __init__(
        self,
        config_dir: Path | None = None,
        mode: str = AUTH_MODE_LOCAL,
        timeout: int = DEFAULT_AUTH_TIMEOUT,
        open_browser: bool = True,
        provider: CredentialProvider | None = None,
    ):
        """
        Initialize the authentication manager.

        Args:
            config_dir: Directory holding client secrets and tokens
            mode: "local" (callback server) or "manual" (copy/paste)
            timeout: Seconds to wait for the local consent flow
            open_browser: Open the consent page automatically in local mode
            provider: Explicit provider, overrides mode
        """
        if mode not in AUTH_MODES:
            raise ValueError(
                f"Invalid auth mode '{mode}'. Must be one of: {', '.join(AUTH_MODES)}"
            )

        self.config_dir = resolve_config_dir(config_dir)
        self.mode = mode
        self.timeout = timeout

        if provider is not None:
            self.provider = provider
        elif mode == AUTH_MODE_MANUAL:
            self.provider = ManualProvider()
        else:
            self.provider = LocalServerProvider(timeout, open_browser)

    def _resolve(self, path: str) -> Path:
        candidate = Path(path).expanduser()
        if candidate.is_absolute():
            return candidate
        return self.config_dir / candidate

    def key_path(self, account: AccountConfig) -> Path:
        """Path of the OAuth client secrets file for an account."""
        return self._resolve(account.keyfile)

    def token_path(self, account: AccountConfig) -> Path:
        """Path of the stored token for an account."""
        return self._resolve(account.credfile)

    def _load_credentials(self, account: AccountConfig) -> Credentials | None:
        token_path = self.token_path(account)

        if not token_path.exists():
            logger.debug(f"No token file found for {account.user}")
            return None

        try:
            creds: Credentials = Credentials.from_authorized_user_file(
                str(token_path), SCOPES
            )
            return creds
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Invalid token file for {account.user}: {e}")
            return None

    def _save_credentials(self, account: AccountConfig, creds: Credentials) -> None:
        token_path = self.token_path(account)
        token_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        token_path.write_text(creds.to_json())
        token_path.chmod(0o600)
        logger.debug(f"Saved credentials for {account.user}")

    def _refresh_credentials(self, creds: Credentials) -> bool:
        if not creds.refresh_token:
            logger.debug("No refresh token available")
            return False

        try:
            creds.refresh(Request())
            return True
        except RefreshError as e:
            logger.warning(f"Failed to refresh credentials: {e}")
            return False

    def get_credentials(self, account: AccountConfig) -> Credentials | None:
        """
        Get valid credentials for an account without user interaction.

        Returns:
            Valid Credentials object, or None if not available
        """
        creds = self._load_credentials(account)

        if creds is None:
            return None

        if creds.valid:
            return creds

        if creds.expired and self._refresh_credentials(creds):
            self._save_credentials(account, creds)
            return creds

        return None

    def authenticate(
        self, account: AccountConfig, force_reauth: bool = False
    ) -> Credentials:
        """
        Authenticate an account.

        Reuses stored credentials when possible, otherwise runs the
        configured consent flow.

        Raises:
            AuthenticationError: If authentication fails
            FileNotFoundError: If the client secrets file is missing
        """
        if not force_reauth:
            creds = self.get_credentials(account)
            if creds is not None:
                logger.debug(f"Using existing credentials for {account.user}")
                return creds

        key_path = self.key_path(account)
        if not key_path.exists():
            raise FileNotFoundError(
                f"OAuth client secrets not found for {account.user}: {key_path}\n"
                "Create a Desktop OAuth client in Google Cloud Console, enable "
                "the People API and save the downloaded JSON at this location."
            )

        logger.info(f"Starting {self.mode} OAuth flow for {account.user}")

        try:
            flow = InstalledAppFlow.from_client_secrets_file(str(key_path), SCOPES)
            new_creds = self.provider.obtain(flow, account.user)
        except AuthenticationError:
            raise
        except Exception as e:
            logger.error(f"Authentication failed for {account.user}: {e}")
            raise AuthenticationError(
                f"Failed to authenticate {account.user}: {e}"
            ) from e

        self._save_credentials(account, new_creds)
        logger.info(f"Successfully authenticated {account.user}")
        return new_creds

    def is_authenticated(self, account: AccountConfig) -> bool:
        """Check if an account has valid stored credentials."""
        return self.get_credentials(account) is not None

    def clear_credentials(self, account: AccountConfig) -> bool:
        """
        Remove the stored token of an account.

        Returns:
            True if a token was removed, False if there was none
        """
        token_path = self.token_path(account)

        if token_path.exists():
            token_path.unlink()
            logger.info(f"Cleared credentials for {account.user}")
            return True

        return False

    def get_auth_status(self, accounts: list[AccountConfig]) -> list[dict[str, object]]:
        """
        Get authentication status for each account.

        Returns:
            One dict per account with user, authenticated, token_exists,
            key_exists and the two file paths
        """
        status: list[dict[str, object]] = []

        for account in accounts:
            token_path = self.token_path(account)
            key_path = self.key_path(account)
            status.append(
                {
                    "user": account.user,
                    "authenticated": self.get_credentials(account) is not None,
                    "token_path": str(token_path),
                    "token_exists": token_path.exists(),
                    "key_path": str(key_path),
                    "key_exists": key_path.exists(),
                }
            )

        return status
