"""
Time Analysis Aggregator

Fetch every source for the date range, render each one as a report section
and ask the LLM where the time went.

Sources are called in-process; if any of them fails the whole analysis fails
and nothing is summarized.
"""

import logging
from datetime import date, timedelta
from pathlib import Path
from typing import Callable, Optional

from timespent.calendar_fetcher import CalendarFetcher, load_calendar_credentials
from timespent.config import Config
from timespent.credential_store import CredentialStore, load_granola_token
from timespent.exceptions import ConfigError
from timespent.gitlab_fetcher import GitLabFetcher
from timespent.granola_fetcher import GranolaFetcher
from timespent.monday_fetcher import MondayFetcher
from timespent.normalizer import DateRange, normalize_all
from timespent.presenter import (
    format_calendar_events,
    format_granola_notes,
    format_merge_requests,
    format_tasks,
)
from timespent.summarizer import Summarizer

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = ("gitlab_token", "monday_api_key", "monday_board_id")


def _last_day(date_range: DateRange) -> date:
    return (date_range.end - timedelta(microseconds=1)).date()


def calendar_section(config: Config, date_range: DateRange) -> str:
    credentials = load_calendar_credentials(CredentialStore(config.token_path))
    events = CalendarFetcher(credentials, config.calendar_id).fetch(date_range)
    return format_calendar_events(
        normalize_all(events, "calendar"), date_range.start.date(), _last_day(date_range)
    )


def merge_requests_section(config: Config, date_range: DateRange) -> str:
    fetcher = GitLabFetcher(config.require("gitlab_token"), config.gitlab_url)
    merge_requests = fetcher.fetch(date_range)
    return format_merge_requests(normalize_all(merge_requests, "gitlab"), date_range.start.date())


def monday_section(config: Config, date_range: DateRange) -> str:
    fetcher = MondayFetcher(config.require("monday_api_key"), config.require("monday_board_id"))
    board_name, items = fetcher.fetch(date_range)
    return format_tasks(normalize_all(items, "monday"), date_range.start.date(), board_name)


def granola_section(config: Config, date_range: DateRange) -> str:
    fetcher = GranolaFetcher(load_granola_token(config.granola_credentials_path))
    notes = fetcher.fetch(date_range)
    return format_granola_notes(normalize_all(notes, "granola"))


# (key, prompt heading, collector) in prompt order
SECTIONS: list[tuple[str, str, Callable[[Config, DateRange], str]]] = [
    ("calendar", "Google calendar info", calendar_section),
    ("gitlab", "Gitlab merge requests", merge_requests_section),
    ("monday", "Monday.com tasks", monday_section),
    ("granola", "Granola meeting notes", granola_section),
]


def collect_sections(config: Config, date_range: DateRange, sections=None) -> dict[str, str]:
    """
    Render every source for the range

    Args:
        config: Settings
        date_range: Range to report on
        sections: Override of SECTIONS

    Returns:
        Section key -> report text

    Raises:
        Whatever the first failing source raised
    """
    collected = {}
    for key, heading, collector in sections or SECTIONS:
        logger.info(f"Fetching {heading}...")
        collected[key] = collector(config, date_range)
    return collected


def load_analysis_prompt(path: Path) -> str:
    path = Path(path)
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigError(f"Failed to read analysis prompt file at {path}: {e}") from e


def load_key_projects(path: Path) -> str:
    """Current key projects, or an empty string if the file does not exist"""
    path = Path(path)
    if not path.exists():
        return ""
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigError(f"Failed to read current key projects file at {path}: {e}") from e


def build_prompt(analysis_prompt: str, key_projects: str, sections: dict[str, str]) -> str:
    parts = [analysis_prompt, "", "Current key projects context:", key_projects]
    for key, heading, _ in SECTIONS:
        parts.extend(["", f"{heading}:", sections.get(key, "")])
    return "\n".join(parts)


def analyse_time_spent(
    config: Config,
    date_range: DateRange,
    summarizer: Optional[Summarizer] = None,
    sections=None,
) -> str:
    """
    Build the full prompt for the range and return the LLM's analysis

    Args:
        config: Settings
        date_range: Range to analyse
        summarizer: Summarizer to use (default: built from config)
        sections: Override of SECTIONS

    Raises:
        ConfigError: Missing settings or prompt file
        TimeSpentError: Any source failing
    """
    for name in REQUIRED_SETTINGS:
        config.require(name)

    analysis_prompt = load_analysis_prompt(config.analysis_prompt_path)
    key_projects = load_key_projects(config.key_projects_path)

    if summarizer is None:
        summarizer = Summarizer(
            config.summary_api_key(),
            provider=config.summary_provider,
            model=config.summary_model,
        )

    collected = collect_sections(config, date_range, sections)

    logger.info("Analysing...")
    return summarizer.summarize(build_prompt(analysis_prompt, key_projects, collected))
