"""
Presenter

Plain-text reports for normalized entries. Each function returns the text;
printing is left to the caller.
"""

import json
from datetime import date, datetime
from typing import Any, Optional, Sequence

from timespent.normalizer import NormalizedEntry

SEPARATOR = "-" * 40
DOUBLE_SEPARATOR = "=" * 40


def format_moment(value: Any, with_time: bool = True) -> str:
    """Local 'YYYY-MM-DD HH:MM' for datetimes, the raw value otherwise"""
    if value is None:
        return ""
    if isinstance(value, datetime):
        local = value.astimezone() if value.tzinfo else value
        return local.strftime("%Y-%m-%d %H:%M" if with_time else "%Y-%m-%d")
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    return str(value)


def format_transcript(transcript: Any) -> str:
    """Transcript entries as 'You: ...' / 'Other: ...' lines"""
    if isinstance(transcript, list):
        lines = []
        for entry in transcript:
            if not isinstance(entry, dict):
                lines.append(str(entry))
                continue
            speaker = "You" if entry.get("source") == "microphone" else "Other"
            lines.append(f"{speaker}: {entry.get('text', '')}")
        return "\n".join(lines)
    if isinstance(transcript, str):
        return transcript
    return json.dumps(transcript, indent=2, default=str)


def format_calendar_events(entries: Sequence[NormalizedEntry], start_date: date, today: Optional[date] = None) -> str:
    if not entries:
        return "No events found between the specified date and today."

    today = today or date.today()
    lines = [f"Meetings from {start_date.isoformat()} to {today.isoformat()}", SEPARATOR]

    for entry in entries:
        lines.append(f"Title: {entry.title or '(no title)'}")
        lines.append(f"Start: {format_moment(entry.occurred_at)}")
        lines.append(f"End: {format_moment(entry.ended_at)}")
        lines.append(f"Participants: {', '.join(entry.participants) or 'No other attendees'}")
        if entry.body:
            lines.append(f"Description: {entry.body}")
        lines.append(SEPARATOR)

    return "\n".join(lines)


def format_merge_requests(entries: Sequence[NormalizedEntry], since: date) -> str:
    if not entries:
        return f"No merged MRs found since {since.isoformat()}"

    lines = [f"Merged MRs since {since.isoformat()}:", ""]

    for i, entry in enumerate(entries, 1):
        lines.append(f"{i}. {entry.title}")
        project = entry.attributes.get("project")
        if project:
            lines.append(f"   Project: {project}")
        if entry.body:
            description = entry.body.replace("\n", "\n   ")
            lines.append(f"   Description:\n   {description}\n")
        lines.append("   ---\n")

    return "\n".join(lines)


def format_tasks(entries: Sequence[NormalizedEntry], since: date, board_name: Optional[str] = None) -> str:
    lines = []
    if board_name:
        lines.append(f"Board: {board_name}")

    if not entries:
        lines.append("No TODO items found for the specified date range.")
        return "\n".join(lines)

    lines.append(f"\nTODO items since {since.isoformat()}")
    lines.append(SEPARATOR)

    for entry in entries:
        lines.append(f"Title: {entry.title}")
        lines.append(f"Type: {entry.attributes.get('type') or 'No type specified'}")
        if entry.body:
            lines.append(f"Description: {entry.body}")
        started = entry.attributes.get("started")
        finished = entry.attributes.get("finished")
        if started is not None:
            lines.append(f"Started: {format_moment(started, with_time=False)}")
        if finished is not None:
            lines.append(f"Finished: {format_moment(finished, with_time=False)}")
        lines.append(SEPARATOR)

    return "\n".join(lines)


def format_granola_notes(entries: Sequence[NormalizedEntry]) -> str:
    if not entries:
        return "No Granola meeting notes found for the specified date range."

    lines = ["", "Granola Meeting Notes", DOUBLE_SEPARATOR, ""]

    for i, entry in enumerate(entries, 1):
        lines.append(f"Meeting {i}: {entry.title or 'Untitled Meeting'}")
        lines.append(SEPARATOR)

        if entry.occurred_at is not None:
            lines.append(f"Date: {format_moment(entry.occurred_at)}")

        calendar_attendees = entry.attributes.get("calendar_attendees") or []
        if entry.participants and not calendar_attendees:
            lines.append(f"Attendees: {', '.join(entry.participants)}")

        if entry.attributes.get("duration"):
            lines.append(f"Duration: {entry.attributes['duration']}")

        lines.append("\nMeeting Notes:")
        lines.append("--------------")

        transcript = entry.attributes.get("transcript")
        if transcript:
            lines.append("TRANSCRIPT:")
            lines.append(format_transcript(transcript))

        if entry.body:
            lines.append("SUMMARY:")
            lines.append(entry.body)

        if not transcript and not entry.body:
            lines.append("[No notes content available]")

        if calendar_attendees:
            lines.append("\nAttendees:")
            for attendee in calendar_attendees:
                organizer = " (Organizer)" if attendee.get("organizer") else ""
                lines.append(f"- {attendee['name']}{organizer}")

        lines.append(f"\n{DOUBLE_SEPARATOR}\n")

    return "\n".join(lines)
