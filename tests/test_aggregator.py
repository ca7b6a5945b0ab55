from datetime import date
from unittest.mock import Mock, patch

import pytest

from timespent.aggregator import (
    SECTIONS,
    analyse_time_spent,
    build_prompt,
    collect_sections,
    load_analysis_prompt,
    load_key_projects,
)
from timespent.config import Config
from timespent.exceptions import ApiError, ConfigError
from timespent.normalizer import DateRange


@pytest.fixture
def config(tmp_path):
    prompt = tmp_path / "analysis-prompt.txt"
    prompt.write_text("Summarize where my time went.\n")
    projects = tmp_path / "current-key-projects.txt"
    projects.write_text("Project Atlas\n")
    return Config(
        gitlab_token="glpat",
        monday_api_key="monday",
        monday_board_id="123",
        openai_api_key="sk",
        analysis_prompt_path=prompt,
        key_projects_path=projects,
    )


@pytest.fixture
def week():
    return DateRange.since(date(2024, 5, 6), today=date(2024, 5, 10))


def static_sections(**overrides):
    texts = {"calendar": "cal text", "gitlab": "mr text", "monday": "task text", "granola": "notes text"}
    sections = []
    for key, heading, _ in SECTIONS:
        collector = overrides.get(key) or Mock(return_value=texts[key])
        sections.append((key, heading, collector))
    return sections


def test_build_prompt_layout():
    prompt = build_prompt(
        "PROMPT",
        "PROJECTS",
        {"calendar": "C", "gitlab": "G", "monday": "M", "granola": "N"},
    )

    assert prompt == "\n".join(
        [
            "PROMPT",
            "",
            "Current key projects context:",
            "PROJECTS",
            "",
            "Google calendar info:",
            "C",
            "",
            "Gitlab merge requests:",
            "G",
            "",
            "Monday.com tasks:",
            "M",
            "",
            "Granola meeting notes:",
            "N",
        ]
    )


def test_load_analysis_prompt_missing(tmp_path):
    with pytest.raises(ConfigError, match="analysis prompt"):
        load_analysis_prompt(tmp_path / "missing.txt")


def test_load_key_projects_optional(tmp_path):
    assert load_key_projects(tmp_path / "missing.txt") == ""


def test_collect_sections_in_order(config, week):
    calls = []
    sections = [
        (key, heading, Mock(side_effect=lambda c, r, key=key: calls.append(key) or key.upper()))
        for key, heading, _ in SECTIONS
    ]

    collected = collect_sections(config, week, sections)

    assert calls == ["calendar", "gitlab", "monday", "granola"]
    assert collected["monday"] == "MONDAY"


def test_analyse_time_spent(config, week):
    summarizer = Mock()
    summarizer.summarize.return_value = "You spent most of the week in meetings."

    result = analyse_time_spent(config, week, summarizer=summarizer, sections=static_sections())

    assert result == "You spent most of the week in meetings."
    prompt = summarizer.summarize.call_args.args[0]
    assert prompt.startswith("Summarize where my time went.")
    assert "Current key projects context:\nProject Atlas" in prompt
    assert "Granola meeting notes:\nnotes text" in prompt


def test_failing_source_aborts_before_summarizing(config, week):
    """One source failing means no partial analysis is produced."""
    summarizer = Mock()
    failing = Mock(side_effect=ApiError("Monday.com", 500, "Internal Server Error"))
    sections = static_sections(monday=failing)

    with pytest.raises(ApiError):
        analyse_time_spent(config, week, summarizer=summarizer, sections=sections)

    summarizer.summarize.assert_not_called()
    # Sources after the failing one are never called
    assert sections[3][2].call_count == 0


def test_missing_setting_fails_before_fetching(config, week):
    config.monday_board_id = None
    sections = static_sections()

    with pytest.raises(ConfigError, match="MONDAY_BOARD_ID"):
        analyse_time_spent(config, week, summarizer=Mock(), sections=sections)

    assert all(collector.call_count == 0 for _, _, collector in sections)


@patch("timespent.aggregator.Summarizer")
def test_builds_summarizer_from_config(mock_summarizer, config, week):
    mock_summarizer.return_value.summarize.return_value = "ok"

    assert analyse_time_spent(config, week, sections=static_sections()) == "ok"
    mock_summarizer.assert_called_once_with("sk", provider="openai", model=None)
