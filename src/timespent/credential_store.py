"""
Credential Store

Load and persist the Google OAuth token, read the OAuth client secret file,
and pick up the Granola access token from the desktop app's storage.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from google.oauth2.credentials import Credentials

from timespent.exceptions import ConfigError

logger = logging.getLogger(__name__)

CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

REQUIRED_TOKEN_KEYS = ("refresh_token", "client_id", "client_secret")


class CredentialStore:
    """Single JSON file holding an authorized-user Google credential"""

    def __init__(self, token_path: Path, scopes: Optional[list] = None):
        """
        Initialize credential store

        Args:
            token_path: Path to token.json
            scopes: OAuth scopes attached to loaded credentials
        """
        self.token_path = Path(token_path).expanduser()
        self.scopes = scopes or CALENDAR_SCOPES

    def load(self) -> Optional[Credentials]:
        """
        Load saved credentials

        Returns:
            Credentials, or None if the file is missing, unreadable or incomplete
        """
        if not self.token_path.exists():
            logger.info(f"No saved token at {self.token_path}")
            return None

        try:
            with open(self.token_path, "r") as f:
                info = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read token file {self.token_path}: {e}")
            return None

        if not isinstance(info, dict):
            logger.warning(f"Token file {self.token_path} does not contain a JSON object")
            return None

        missing = [key for key in REQUIRED_TOKEN_KEYS if not info.get(key)]
        if missing:
            logger.warning(f"Token file is missing {', '.join(missing)}, ignoring it")
            return None

        try:
            credentials = Credentials.from_authorized_user_info(info, self.scopes)
        except ValueError as e:
            logger.warning(f"Token file rejected: {e}")
            return None

        logger.info(f"Loaded saved token from {self.token_path}")
        return credentials

    def save(self, credentials: Credentials):
        """
        Overwrite the token file with the given credentials

        Args:
            credentials: Credentials holding a refresh token and client keys
        """
        if not credentials.refresh_token:
            raise ValueError("Refusing to save credentials without a refresh token")

        payload = {
            "type": "authorized_user",
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "refresh_token": credentials.refresh_token,
        }

        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.token_path, "w") as f:
            json.dump(payload, f)
        logger.info(f"Token saved to {self.token_path}")

    def delete(self):
        """Remove the token file so the next run re-authenticates"""
        try:
            self.token_path.unlink()
            logger.info("Deleted invalid token.")
        except FileNotFoundError:
            pass


def load_client_secrets(path: Path) -> Dict[str, Any]:
    """
    Read an OAuth client descriptor (credentials.json from the Cloud console)

    Args:
        path: Path to the client secret file

    Returns:
        {"installed": {...}} or {"web": {...}} with auth/token URIs filled in

    Raises:
        ConfigError: If the file is missing or not a client descriptor
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigError(f"OAuth client secret file not found at: {path}")

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read OAuth client secret file {path}: {e}") from e

    client_type = None
    if isinstance(data, dict):
        client_type = next((key for key in ("installed", "web") if isinstance(data.get(key), dict)), None)
    if client_type is None:
        raise ConfigError(f"{path} has neither an 'installed' nor a 'web' client")

    key = dict(data[client_type])
    if not key.get("client_id") or not key.get("client_secret"):
        raise ConfigError(f"{path} is missing client_id or client_secret")

    key.setdefault("auth_uri", GOOGLE_AUTH_URI)
    key.setdefault("token_uri", GOOGLE_TOKEN_URI)
    return {client_type: key}


def load_granola_token(path: Path) -> str:
    """
    Read the Granola access token from the desktop app's storage

    Granola keeps its WorkOS tokens as a JSON string inside supabase.json.

    Args:
        path: Path to supabase.json

    Returns:
        Access token string

    Raises:
        ConfigError: If Granola is not installed or not logged in
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigError(
            f"Granola credentials not found at: {path}. "
            "Make sure Granola is installed and you've logged in at least once"
        )

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Error reading Granola credentials: {e}") from e

    if not isinstance(data, dict) or not data.get("workos_tokens"):
        raise ConfigError("No workos_tokens found in Granola credentials")

    workos_tokens = data["workos_tokens"]
    if isinstance(workos_tokens, str):
        try:
            workos_tokens = json.loads(workos_tokens)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Malformed workos_tokens in Granola credentials: {e}") from e

    if not isinstance(workos_tokens, dict):
        raise ConfigError("Malformed workos_tokens in Granola credentials")

    access_token = workos_tokens.get("access_token")
    if not access_token:
        raise ConfigError("No access token found in workos_tokens")

    logger.info("Loaded Granola credentials from app storage")
    return access_token
