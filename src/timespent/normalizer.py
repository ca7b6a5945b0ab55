"""
Record Normalizer

Turn loosely shaped API records into NormalizedEntry objects.

Every source names its fields differently, and Granola has changed its own
shape more than once, so each logical field is looked up through an ordered
list of candidate keys and the first one present wins. Nothing in here raises
for a malformed record: missing data produces empty fields.

Granola note content is a ProseMirror document:
{
  "type": "doc",
  "content": [
    {"type": "heading", "attrs": {"level": 1}, "content": [{"type": "text", "text": "..."}]},
    {"type": "paragraph", "content": [{"type": "text", "text": "..."}]},
    {"type": "bulletList", "content": [{"type": "listItem", "content": [...]}]},
    ...
  ]
}
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Sequence

logger = logging.getLogger(__name__)

GRANOLA_DATE_FIELDS = ("date", "meeting_date", "meetingDate", "created_at", "createdAt", "timestamp")
CALENDAR_START_FIELDS = ("start.dateTime", "start.date")
CALENDAR_END_FIELDS = ("end.dateTime", "end.date")
MERGE_REQUEST_DATE_FIELDS = ("merged_at", "updated_at", "created_at")
TODO_START_FIELDS = ("startDate", "started", "start_date", "createdAt")
TODO_END_FIELDS = ("endDate", "finished", "end_date", "completedAt")


class EntryKind(str, Enum):
    MEETING = "meeting"
    MERGE_REQUEST = "merge_request"
    TASK = "task"
    NOTE = "note"


@dataclass
class NormalizedEntry:
    """Common shape every source is reduced to"""

    kind: EntryKind
    title: str = ""
    occurred_at: Any = None  # datetime, the raw value if unparsable, or None
    participants: list[str] = field(default_factory=list)
    body: str = ""
    source_id: Optional[str] = None
    ended_at: Any = None
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DateRange:
    """Half-open interval [start, end) of aware datetimes"""

    start: datetime
    end: datetime

    @classmethod
    def since(cls, start_date: date, today: Optional[date] = None) -> "DateRange":
        """
        Range from the local start of start_date to the end of today

        Args:
            start_date: First day included
            today: Last day included (default: date.today())
        """
        if today is None:
            today = date.today()
        start = datetime.combine(start_date, time.min).astimezone()
        end = datetime.combine(today + timedelta(days=1), time.min).astimezone()
        return cls(start, end)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


# --- Field lookup ---


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict)) and len(value) == 0:
        return True
    return False


def get_path(record: Any, path: str) -> Any:
    """Follow a dotted key path through nested dicts, None if any step is missing"""
    value = record
    for key in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def first_present(record: Any, candidates: Sequence[str]) -> Any:
    """Value of the first candidate key that is set and not empty"""
    for candidate in candidates:
        value = get_path(record, candidate)
        if not _is_blank(value):
            return value
    return None


def _aware(moment: datetime) -> Optional[datetime]:
    if moment.tzinfo is not None:
        return moment
    try:
        return moment.astimezone()
    except (OverflowError, OSError, ValueError):
        return None


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a date-ish value into an aware datetime

    Accepts datetime, date, epoch seconds or milliseconds and ISO-8601 strings.
    Naive values are taken as local time.

    Returns:
        Aware datetime, or None if the value cannot be parsed
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return _aware(value)

    if isinstance(value, date):
        return _aware(datetime.combine(value, time.min))

    if isinstance(value, (int, float)):
        # Granola and JS clients hand out millisecond timestamps
        seconds = value / 1000 if abs(value) > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return _aware(datetime.fromisoformat(text))
        except ValueError:
            return None

    return None


def first_date(record: Any, candidates: Sequence[str]) -> Any:
    """
    First candidate that parses as a date

    Returns:
        Aware datetime if any candidate parses, otherwise the first raw value
        found, otherwise None
    """
    raw_values = []
    for candidate in candidates:
        value = get_path(record, candidate)
        if _is_blank(value):
            continue
        parsed = parse_date(value)
        if parsed is not None:
            return parsed
        raw_values.append(value)

    return raw_values[0] if raw_values else None


def record_in_range(record: Any, candidates: Sequence[str], date_range: DateRange) -> bool:
    """
    Check a record against a date range using its first parseable date candidate

    Records without any parseable candidate are out of range.
    """
    for candidate in candidates:
        parsed = parse_date(get_path(record, candidate))
        if parsed is not None:
            return date_range.contains(parsed)
    return False


# --- Rich text ---


class BlockType(Enum):
    DOC = "doc"
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    BULLET_LIST = "bulletList"
    ORDERED_LIST = "orderedList"
    LIST_ITEM = "listItem"
    BLOCKQUOTE = "blockquote"
    CODE_BLOCK = "codeBlock"
    TEXT = "text"
    UNKNOWN = "unknown"

    @classmethod
    def of(cls, node: Any) -> "BlockType":
        if not isinstance(node, dict):
            return cls.UNKNOWN
        try:
            return cls(node.get("type"))
        except ValueError:
            return cls.UNKNOWN


def extract_text(node: Any) -> str:
    """
    Collect every text leaf of a rich-text tree in document order

    Args:
        node: A document dict, a list of blocks, or a {"content": [...]} wrapper

    Returns:
        Leaf texts joined by a single space; block boundaries are not kept
    """
    if isinstance(node, list):
        roots = node
    elif isinstance(node, dict) and "type" not in node:
        roots = node.get("content")
        if not isinstance(roots, list):
            return ""
    elif isinstance(node, dict):
        roots = [node]
    else:
        return ""

    texts = []
    stack = list(reversed(roots))

    while stack:
        block = stack.pop()
        block_type = BlockType.of(block)

        if block_type is BlockType.TEXT:
            text = block.get("text")
            if isinstance(text, str) and text:
                texts.append(text)
            continue

        if block_type is BlockType.UNKNOWN:
            if isinstance(block, dict):
                logger.debug(f"Skipping unhandled block type: {block.get('type')}")
            continue

        children = block.get("content")
        if isinstance(children, list):
            stack.extend(reversed(children))

    return " ".join(texts).strip()


# --- People ---


def _person_name(person: Any, keys: Sequence[str] = ("name", "email")) -> Optional[str]:
    if isinstance(person, str):
        return person or None
    if isinstance(person, dict):
        name = first_present(person, keys)
        return str(name) if name is not None else None
    return None


def _names(people: Any, keys: Sequence[str] = ("name", "email")) -> list[str]:
    if not isinstance(people, list):
        return []
    names = []
    for person in people:
        name = _person_name(person, keys)
        if name:
            names.append(name)
    return names


# --- Per-source normalizers ---


def normalize_calendar_event(event: dict[str, Any]) -> NormalizedEntry:
    attendees = event.get("attendees") if isinstance(event, dict) else None
    participants = []
    if isinstance(attendees, list):
        # Meeting rooms show up as resource attendees
        participants = _names(
            [a for a in attendees if isinstance(a, dict) and not a.get("resource")], ("email",)
        )

    return NormalizedEntry(
        kind=EntryKind.MEETING,
        title=str(first_present(event, ("summary",)) or ""),
        occurred_at=first_date(event, CALENDAR_START_FIELDS),
        ended_at=first_date(event, CALENDAR_END_FIELDS),
        participants=participants,
        body=str(first_present(event, ("description",)) or ""),
        source_id=first_present(event, ("id",)),
    )


def normalize_merge_request(merge_request: dict[str, Any]) -> NormalizedEntry:
    author = _person_name(get_path(merge_request, "author"), ("name", "username"))
    return NormalizedEntry(
        kind=EntryKind.MERGE_REQUEST,
        title=str(first_present(merge_request, ("title",)) or ""),
        occurred_at=first_date(merge_request, MERGE_REQUEST_DATE_FIELDS),
        participants=[author] if author else [],
        body=str(first_present(merge_request, ("description",)) or ""),
        source_id=first_present(merge_request, ("iid", "id")),
        attributes={
            "project": first_present(merge_request, ("references.full", "project_id")),
            "url": first_present(merge_request, ("web_url",)),
        },
    )


def monday_column(item: dict[str, Any], title: str) -> Optional[dict[str, Any]]:
    """Column value whose column title matches, or None"""
    column_values = get_path(item, "column_values")
    if not isinstance(column_values, list):
        return None
    for column_value in column_values:
        if get_path(column_value, "column.title") == title:
            return column_value
    return None


def monday_column_date(item: dict[str, Any], title: str) -> Any:
    """
    Date stored in a Monday.com date column

    The column's value is a JSON string like '{"date": "2024-05-02"}'.
    """
    column_value = monday_column(item, title)
    if column_value is None:
        return None

    value = column_value.get("value")
    raw = None
    if isinstance(value, str) and value:
        try:
            decoded = json.loads(value)
        except ValueError:
            decoded = None
        if isinstance(decoded, dict):
            raw = decoded.get("date")
    elif isinstance(value, dict):
        raw = value.get("date")

    if _is_blank(raw):
        raw = column_value.get("text")
    if _is_blank(raw):
        return None

    parsed = parse_date(raw)
    return parsed if parsed is not None else raw


def normalize_monday_item(item: dict[str, Any]) -> NormalizedEntry:
    started = monday_column_date(item, "Started")
    finished = monday_column_date(item, "Finished")
    type_column = monday_column(item, "Type") or {}

    return NormalizedEntry(
        kind=EntryKind.TASK,
        title=str(first_present(item, ("name",)) or ""),
        occurred_at=started if started is not None else finished,
        ended_at=finished,
        source_id=first_present(item, ("id",)),
        attributes={
            "type": type_column.get("text") or None,
            "started": started,
            "finished": finished,
        },
    )


def normalize_todo_task(task: dict[str, Any]) -> NormalizedEntry:
    started = first_date(task, TODO_START_FIELDS)
    finished = first_date(task, TODO_END_FIELDS)

    return NormalizedEntry(
        kind=EntryKind.TASK,
        title=str(first_present(task, ("title", "name")) or ""),
        occurred_at=started if started is not None else finished,
        ended_at=finished,
        body=str(first_present(task, ("description", "notes", "details")) or ""),
        source_id=first_present(task, ("id",)),
        attributes={
            "type": first_present(task, ("type", "category")),
            "started": started,
            "finished": finished,
        },
    )


def _plain(value: Any) -> str:
    return value if isinstance(value, str) else ""


# Ordered (field, reader) attempts for a Granola note body
GRANOLA_BODY_ACCESSORS: list[tuple[str, Callable[[Any], str]]] = [
    ("last_viewed_panel.content", extract_text),
    ("notes_plain", _plain),
    ("summary", _plain),
    ("notes", lambda notes: notes if isinstance(notes, str) else extract_text(notes)),
    ("content", extract_text),
    ("text", _plain),
]


def granola_body(note: dict[str, Any]) -> str:
    """Text of the first body field that is present on the note"""
    for path, reader in GRANOLA_BODY_ACCESSORS:
        value = get_path(note, path)
        if not _is_blank(value):
            return reader(value).strip()
    return ""


def granola_participants(note: dict[str, Any]) -> list[str]:
    attendees = _names(get_path(note, "attendees"))
    if attendees:
        return attendees

    people = get_path(note, "people")
    if isinstance(people, dict):
        creator = _person_name(people.get("creator"))
        if creator:
            attendees.append(creator)
        attendees.extend(_names(people.get("attendees")))
    if attendees:
        return attendees

    return _names(get_path(note, "google_calendar_event.attendees"), ("displayName", "email"))


def normalize_granola_note(note: dict[str, Any]) -> NormalizedEntry:
    calendar_attendees = []
    raw_calendar_attendees = get_path(note, "google_calendar_event.attendees")
    if isinstance(raw_calendar_attendees, list):
        for attendee in raw_calendar_attendees:
            name = _person_name(attendee, ("displayName", "email"))
            if name:
                calendar_attendees.append(
                    {"name": name, "organizer": bool(get_path(attendee, "organizer"))}
                )

    return NormalizedEntry(
        kind=EntryKind.NOTE,
        title=str(first_present(note, ("title",)) or ""),
        occurred_at=first_date(note, GRANOLA_DATE_FIELDS),
        participants=granola_participants(note),
        body=granola_body(note),
        source_id=first_present(note, ("id",)),
        attributes={
            "duration": first_present(note, ("duration",)),
            "transcript": get_path(note, "transcript"),
            "calendar_attendees": calendar_attendees,
        },
    )


NORMALIZERS: dict[str, Callable[[dict[str, Any]], NormalizedEntry]] = {
    "calendar": normalize_calendar_event,
    "gitlab": normalize_merge_request,
    "monday": normalize_monday_item,
    "todo": normalize_todo_task,
    "granola": normalize_granola_note,
}


def normalize(record: dict[str, Any], source: str) -> NormalizedEntry:
    """
    Normalize one record from the named source

    Args:
        record: Raw API record
        source: One of NORMALIZERS' keys
    """
    try:
        normalizer = NORMALIZERS[source]
    except KeyError:
        raise ValueError(f"Unknown record source: {source}") from None
    return normalizer(record if isinstance(record, dict) else {})


def normalize_all(records: Iterable[dict[str, Any]], source: str) -> list[NormalizedEntry]:
    return [normalize(record, source) for record in records]


def is_personal(entry: NormalizedEntry) -> bool:
    """True for tasks typed Personal, which are never reported"""
    task_type = entry.attributes.get("type")
    return isinstance(task_type, str) and task_type.strip().lower() == "personal"
