"""
Configuration for the YouTube uploads client.

Values come from the environment (a `.env` file is honoured). Anything left
empty or still carrying the sample's "Replace ..." placeholder counts as not
configured.
"""

import json
import os
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from youtube_errors import ConfigurationError
from youtube_models import MissingConfig

PLACEHOLDER_PREFIX = "Replace"
GLOBAL_CACHE_DIR = os.path.expanduser("~/.youtube_scripts_cache")
DEFAULT_APP_NAME = "ytdl-uploads"
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class AppConfig:
    api_key: str = ""
    upload_playlist: str = ""
    client_id: str = ""
    client_secret: str = ""
    client_secret_file: Optional[str] = None
    app_name: str = DEFAULT_APP_NAME
    settings_path: str = os.path.join(GLOBAL_CACHE_DIR, "settings.json")
    token_cache_dir: str = GLOBAL_CACHE_DIR
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    request_timeout: float = DEFAULT_TIMEOUT_SECONDS

    @property
    def has_oauth_client(self) -> bool:
        if self.client_secret_file:
            return True
        return is_configured(self.client_id) and is_configured(self.client_secret)


def is_configured(value: Optional[str]) -> bool:
    return bool(value) and not value.startswith(PLACEHOLDER_PREFIX)


def _find_client_secret_file(search_dir: str = ".") -> Optional[str]:
    try:
        candidates = sorted(
            f for f in os.listdir(search_dir) if f.startswith("client_secret_") and f.endswith(".json")
        )
    except OSError:
        return None
    return os.path.join(search_dir, candidates[0]) if candidates else None


def _int_setting(environ: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _float_setting(environ: Mapping[str, str], name: str, default: float) -> float:
    try:
        return float(environ.get(name, default))
    except (TypeError, ValueError):
        return default


def load_config(environ: Optional[Mapping[str, str]] = None, search_dir: str = ".") -> AppConfig:
    """Build an AppConfig from `environ` (defaults to os.environ after load_dotenv)."""
    if environ is None:
        load_dotenv()
        environ = os.environ

    secret_file = environ.get("YOUTUBE_CLIENT_SECRET_FILE")
    if not (secret_file and os.path.exists(secret_file)):
        secret_file = _find_client_secret_file(search_dir)

    cache_dir = os.path.expanduser(environ.get("YOUTUBE_TOKEN_CACHE_DIR", GLOBAL_CACHE_DIR))
    return AppConfig(
        api_key=environ.get("YOUTUBE_API_KEY", ""),
        upload_playlist=environ.get("YOUTUBE_UPLOAD_PLAYLIST", ""),
        client_id=environ.get("YOUTUBE_CLIENT_ID", ""),
        client_secret=environ.get("YOUTUBE_CLIENT_SECRET", ""),
        client_secret_file=secret_file,
        app_name=environ.get("YOUTUBE_APP_NAME", DEFAULT_APP_NAME),
        settings_path=os.path.expanduser(
            environ.get("YOUTUBE_SETTINGS_PATH", os.path.join(cache_dir, "settings.json"))
        ),
        token_cache_dir=cache_dir,
        max_attempts=max(1, _int_setting(environ, "YOUTUBE_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)),
        request_timeout=_float_setting(environ, "YOUTUBE_REQUEST_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
    )


def missing_configurations(config: AppConfig) -> List[MissingConfig]:
    """List what the developer still has to configure, with a remedy for each."""
    missing: List[MissingConfig] = []

    if not is_configured(config.api_key):
        missing.append(
            MissingConfig(
                "API key not configured",
                "Set YOUTUBE_API_KEY to your Simple API key from the Google API Console.",
            )
        )

    if not is_configured(config.upload_playlist):
        missing.append(
            MissingConfig(
                "Playlist ID not configured",
                "Set YOUTUBE_UPLOAD_PLAYLIST to the ID of the playlist uploads are submitted to "
                "(playlist IDs typically start with PL).",
            )
        )

    if not config.has_oauth_client:
        missing.append(
            MissingConfig(
                "OAuth client not configured",
                "Place a client_secret_*.json file in the working directory, set "
                "YOUTUBE_CLIENT_SECRET_FILE, or set YOUTUBE_CLIENT_ID and YOUTUBE_CLIENT_SECRET.",
            )
        )

    return missing


def ensure_configured(config: AppConfig) -> AppConfig:
    missing = missing_configurations(config)
    if missing:
        raise ConfigurationError(missing)
    return config


def client_credentials(config: AppConfig) -> Tuple[str, str]:
    """Return (client_id, client_secret), reading the client secret file when one is configured."""
    if config.client_secret_file:
        with open(config.client_secret_file, "r", encoding="utf-8") as f:
            creds: Dict = json.load(f)
        client_data = creds.get("installed") or creds.get("web") or {}
        return client_data["client_id"], client_data["client_secret"]
    return config.client_id, config.client_secret
