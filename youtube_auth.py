#!/usr/bin/env python3
"""
YouTube OAuth Session Manager
Account-scoped access tokens for the uploads client.

Tokens are cached per account in one JSON file; an expired token is refreshed
with the stored refresh token when possible, otherwise the account needs a
fresh consent flow before the next remote call.
"""

import json
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import requests
from google_auth_oauthlib.flow import InstalledAppFlow

from utils import get_logger
from youtube_config import AppConfig, client_credentials
from youtube_errors import parse_api_error

# OAuth settings
OAUTH_SCOPES = [
    "https://www.googleapis.com/auth/youtube",
    "https://www.googleapis.com/auth/userinfo.profile",
]
OAUTH_REDIRECT_URI = "http://localhost:8080"
OAUTH_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
OAUTH_TOKEN_URI = "https://oauth2.googleapis.com/token"
TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)

# Token endpoint errors that mean the stored grant is gone for good
REVOKED_GRANT_ERRORS = {"invalid_grant", "unauthorized_client"}

logger = get_logger(__name__)


@dataclass(frozen=True)
class Credential:
    """Authorization snapshot for one account.

    `generation` identifies the account session the credential was built for,
    so results produced with an outdated credential can be recognised.
    """

    account: str
    access_token: Optional[str]
    generation: int = 0

    @property
    def usable(self) -> bool:
        return bool(self.access_token)

    def headers(self) -> Dict[str, str]:
        if not self.access_token:
            return {}
        return {"Authorization": f"Bearer {self.access_token}"}

    def __repr__(self) -> str:
        return f"Credential(account={self.account!r}, usable={self.usable}, generation={self.generation})"


class TokenRevocationSignal:
    """Fan-out point for "this account's token is no longer valid" notices."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[str], None]] = []

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def notify(self, account: str) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        logger.debug("Token revocation for %s (%d subscribers)", account, len(subscribers))
        for callback in subscribers:
            callback(account)


def _grant_revoked(response: Optional[Any]) -> bool:
    if response is None or response.status_code not in (400, 401):
        return False
    _, reason = parse_api_error(response)
    return reason in REVOKED_GRANT_ERRORS


class YouTubeAuth:
    def __init__(self, config: AppConfig, http: Optional[Any] = None, manual: bool = False):
        self.config = config
        self.cache_dir = config.token_cache_dir
        os.makedirs(self.cache_dir, exist_ok=True)
        self.token_file = os.path.join(self.cache_dir, "tokens.json")
        self.http = http or requests
        self.manual = manual
        self._lock = threading.Lock()

    def _load_tokens(self) -> Dict[str, Dict[str, Any]]:
        if not os.path.exists(self.token_file):
            return {}
        try:
            with open(self.token_file, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.debug(f"Error reading token cache: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save_tokens(self, tokens: Dict[str, Dict[str, Any]]) -> None:
        with open(self.token_file, "w") as f:
            json.dump(tokens, f)

    def get_cached_token(self, account: str) -> Optional[str]:
        """Get cached access token for `account` if present and not expired."""
        with self._lock:
            entry = self._load_tokens().get(account)
        if not entry or not entry.get("access_token"):
            return None
        try:
            expires_at = datetime.fromisoformat(entry["expires_at"])
        except (KeyError, ValueError):
            return None
        if datetime.now(timezone.utc) < expires_at:
            return entry["access_token"]
        return None

    def save_token(self, account: str, access_token: str, expires_in: int = 3600, refresh_token: Optional[str] = None):
        """Save access token for `account` with expiration.

        Args:
            account: Account identity the token belongs to
            access_token: The OAuth access token
            expires_in: Time in seconds until token expires (default: 1 hour)
            refresh_token: Long-lived refresh token, kept from earlier grants when omitted
        """
        now = datetime.now(timezone.utc)
        with self._lock:
            tokens = self._load_tokens()
            previous = tokens.get(account, {})
            tokens[account] = {
                "access_token": access_token,
                "refresh_token": refresh_token or previous.get("refresh_token"),
                "timestamp": now.isoformat(),
                "expires_at": (now + timedelta(seconds=expires_in) - TOKEN_EXPIRY_BUFFER).isoformat(),
            }
            self._save_tokens(tokens)

    def refresh_access_token(self, account: str) -> Optional[str]:
        """Trade the stored refresh token for a new access token."""
        with self._lock:
            refresh_token = self._load_tokens().get(account, {}).get("refresh_token")
        if not refresh_token:
            return None

        client_id, client_secret = client_credentials(self.config)
        try:
            response = self.http.post(
                OAUTH_TOKEN_URI,
                data={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
                timeout=self.config.request_timeout,
            )
            response.raise_for_status()
            token_data = response.json()
            access_token = token_data["access_token"]
            expires_in = int(token_data.get("expires_in", 3600))
        except requests.exceptions.HTTPError as e:
            if _grant_revoked(e.response):
                logger.info("Refresh token rejected for %s: %s", account, e)
                self.forget_account(account)
            else:
                # Server side trouble; the refresh token stays for the next attempt
                logger.warning("Could not refresh token for %s: %s", account, e)
            return None
        except requests.exceptions.RequestException as e:
            logger.warning("Could not refresh token for %s: %s", account, e)
            return None
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Unexpected token response for %s: %r", account, e)
            return None

        self.save_token(account, access_token, expires_in, token_data.get("refresh_token"))
        logger.debug("Refreshed access token for %s", account)
        return access_token

    def credential_for(self, account: str, generation: int = 0) -> Credential:
        """Build a Credential for `account` from the cache, refreshing if needed.

        The returned credential may carry no token; remote calls made with it
        report that consent is required.
        """
        token = self.get_cached_token(account) or self.refresh_access_token(account)
        return Credential(account=account, access_token=token, generation=generation)

    def invalidate_token(self, account: str) -> None:
        """Drop the cached access token for `account`, keeping its refresh token."""
        with self._lock:
            tokens = self._load_tokens()
            if account in tokens:
                tokens[account]["access_token"] = None
                self._save_tokens(tokens)
        logger.info("Invalidated access token for %s", account)

    def forget_account(self, account: str) -> None:
        with self._lock:
            tokens = self._load_tokens()
            if tokens.pop(account, None) is not None:
                self._save_tokens(tokens)

    def clear_session(self):
        """Clear all cached authentication."""
        with self._lock:
            if os.path.exists(self.token_file):
                os.remove(self.token_file)
                logger.info("Authentication session cleared")

    def get_auth_url(self, client_id: str, account: str) -> str:
        """Generate OAuth authorization URL."""
        from urllib.parse import urlencode
        params = {
            "client_id": client_id,
            "redirect_uri": OAUTH_REDIRECT_URI,
            "scope": " ".join(OAUTH_SCOPES),
            "response_type": "code",
            "access_type": "offline",
            "prompt": "consent",
            "login_hint": account,
        }
        return f"{OAUTH_AUTH_URI}?{urlencode(params)}"

    def exchange_code(self, account: str, auth_code: str) -> str:
        """Exchange authorization code for access token."""
        client_id, client_secret = client_credentials(self.config)
        response = self.http.post(OAUTH_TOKEN_URI, data={
            "client_id": client_id,
            "client_secret": client_secret,
            "code": auth_code,
            "grant_type": "authorization_code",
            "redirect_uri": OAUTH_REDIRECT_URI
        }, timeout=self.config.request_timeout)
        response.raise_for_status()

        token_data = response.json()
        access_token = token_data["access_token"]
        expires_in = int(token_data.get("expires_in", 3600))  # Default to 1 hour if not provided
        self.save_token(account, access_token, expires_in, token_data.get("refresh_token"))
        return access_token

    def run_manual_flow(self, account: str) -> bool:
        """Consent by pasting the authorization code back (headless machines)."""
        client_id, _ = client_credentials(self.config)
        auth_url = self.get_auth_url(client_id, account)

        print(f"\nAuthorization required for {account}")
        print(f"\n1. Visit: {auth_url}")
        print("\n2. Authorize the application")
        print("3. You'll be redirected to localhost:8080 - ERROR IS NORMAL!")
        print("4. Copy the 'code' from the URL (after code=)\n")

        auth_code = input("Paste authorization code (empty to cancel): ").strip()
        if not auth_code:
            logger.info("Consent cancelled for %s", account)
            return False

        try:
            self.exchange_code(account, auth_code)
        except requests.exceptions.HTTPError as e:
            logger.warning(f"OAuth error: {e}")
            return False
        return True

    def run_local_server(self, account: str) -> bool:
        """Consent via a local redirect server (preferred when a browser is available)."""
        if self.config.client_secret_file:
            flow = InstalledAppFlow.from_client_secrets_file(
                os.path.abspath(self.config.client_secret_file),
                scopes=OAUTH_SCOPES,
                redirect_uri=OAUTH_REDIRECT_URI,
            )
        else:
            client_id, client_secret = client_credentials(self.config)
            flow = InstalledAppFlow.from_client_config(
                {
                    "installed": {
                        "client_id": client_id,
                        "client_secret": client_secret,
                        "auth_uri": OAUTH_AUTH_URI,
                        "token_uri": OAUTH_TOKEN_URI,
                        "redirect_uris": [OAUTH_REDIRECT_URI],
                    }
                },
                scopes=OAUTH_SCOPES,
                redirect_uri=OAUTH_REDIRECT_URI,
            )

        try:
            creds = flow.run_local_server(
                host="localhost",
                port=8080,
                login_hint=account,
                access_type="offline",
                prompt="consent",
            )
        except Exception as e:
            # Denied consent surfaces as an oauthlib error from the redirect
            logger.warning("Consent flow for %s did not complete: %s", account, e)
            return False

        # Get the token's expiration time (default to 1 hour if not provided)
        if creds.expiry:
            expiry = creds.expiry.replace(tzinfo=timezone.utc)
            expires_in = int((expiry - datetime.now(timezone.utc)).total_seconds())
        else:
            expires_in = 3600
        self.save_token(account, creds.token, expires_in, creds.refresh_token)
        return True

    def request_consent(self, account: str, error: Any = None) -> bool:
        """Run the configured consent flow for `account`; True when access was granted."""
        logger.info("Requesting consent for %s (%s)", account, error or "no token")
        if self.manual:
            return self.run_manual_flow(account)
        return self.run_local_server(account)
