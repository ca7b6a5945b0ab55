"""
Configuration

All settings are read from the environment once, at startup, into a Config
instance that is passed to whatever needs it.
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional

from timespent.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_GRANOLA_CREDENTIALS = (
    Path.home() / "Library" / "Application Support" / "Granola" / "supabase.json"
)

# Config field -> environment variable
ENV_VARS = {
    "calendar_id": "CALENDAR_ID",
    "token_path": "GOOGLE_TOKEN_PATH",
    "client_secrets_path": "GOOGLE_CLIENT_SECRETS_PATH",
    "gitlab_token": "GITLAB_TOKEN",
    "gitlab_url": "GITLAB_URL",
    "monday_api_key": "MONDAY_API_KEY",
    "monday_board_id": "MONDAY_BOARD_ID",
    "todo_api_key": "TODOG_KEY",
    "todo_base_url": "TODO_BASE_URL",
    "granola_credentials_path": "GRANOLA_CREDENTIALS_PATH",
    "summary_provider": "SUMMARY_PROVIDER",
    "summary_model": "SUMMARY_MODEL",
    "openai_api_key": "OPENAI_API_KEY",
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "analysis_prompt_path": "ANALYSIS_PROMPT_PATH",
    "key_projects_path": "KEY_PROJECTS_PATH",
}

PATH_FIELDS = {
    "token_path",
    "client_secrets_path",
    "granola_credentials_path",
    "analysis_prompt_path",
    "key_projects_path",
}


@dataclass
class Config:
    """Settings shared by every command"""

    calendar_id: str = "primary"
    token_path: Path = Path("token.json")
    client_secrets_path: Path = Path("credentials.json")
    gitlab_token: Optional[str] = None
    gitlab_url: str = "https://gitlab.com/api/v4"
    monday_api_key: Optional[str] = None
    monday_board_id: Optional[str] = None
    todo_api_key: Optional[str] = None
    todo_base_url: str = "https://todo.boonwilliams.com/api"
    granola_credentials_path: Path = DEFAULT_GRANOLA_CREDENTIALS
    summary_provider: str = "openai"
    summary_model: Optional[str] = None
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    analysis_prompt_path: Path = Path("analysis-prompt.txt")
    key_projects_path: Path = Path("current-key-projects.txt")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """
        Build a Config from environment variables

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            Config with defaults for anything unset
        """
        if environ is None:
            environ = os.environ

        values = {}
        for field in fields(cls):
            raw = environ.get(ENV_VARS[field.name])
            if raw is None or raw.strip() == "":
                continue
            raw = raw.strip()
            if field.name in PATH_FIELDS:
                values[field.name] = Path(raw).expanduser()
            else:
                values[field.name] = raw

        config = cls(**values)
        config.summary_provider = config.summary_provider.lower()
        logger.debug(f"Loaded configuration for: {', '.join(sorted(values)) or 'defaults only'}")
        return config

    def require(self, name: str) -> str:
        """
        Get a setting that must be present

        Args:
            name: Config field name (e.g. "gitlab_token")

        Returns:
            The configured value

        Raises:
            ConfigError: If the setting is empty
        """
        value = getattr(self, name)
        if value is None or value == "":
            raise ConfigError(f"{ENV_VARS[name]} environment variable is not set")
        return value

    def summary_api_key(self) -> str:
        """API key for the configured summary provider"""
        if self.summary_provider == "anthropic":
            return self.require("anthropic_api_key")
        if self.summary_provider == "openai":
            return self.require("openai_api_key")
        raise ConfigError(
            f"Unknown SUMMARY_PROVIDER '{self.summary_provider}' (expected openai or anthropic)"
        )
