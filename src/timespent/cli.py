"""
Command-line entry points

Every command reads its settings once, runs, and exits 0 on success or 1
with the error on stderr.
"""

import argparse
import logging
import sys
from datetime import date, timedelta
from typing import Callable, Optional

from dotenv import load_dotenv

from timespent.aggregator import analyse_time_spent
from timespent.calendar_fetcher import CalendarFetcher, load_calendar_credentials
from timespent.config import Config
from timespent.credential_store import CredentialStore, load_granola_token
from timespent.gitlab_fetcher import GitLabFetcher
from timespent.granola_fetcher import GranolaFetcher
from timespent.monday_fetcher import MondayFetcher
from timespent.normalizer import DateRange, normalize_all
from timespent.oauth_flow import REDIRECT_PORT, LocalServerReceiver, ManualCodeReceiver, OAuthFlowRunner
from timespent.presenter import (
    format_calendar_events,
    format_granola_notes,
    format_merge_requests,
    format_tasks,
)
from timespent.todo_fetcher import TodoFetcher
from timespent.token_validator import TokenValidator

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Send log records to stderr so stdout only carries the report"""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
    root.addHandler(console_handler)


def iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not a YYYY-MM-DD date") from None


def this_monday(today: Optional[date] = None) -> date:
    today = today or date.today()
    return today - timedelta(days=today.weekday())


class _ArgumentParser(argparse.ArgumentParser):
    """Usage errors exit 1 like every other failure"""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _parser(description: str) -> argparse.ArgumentParser:
    parser = _ArgumentParser(description=description)
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")
    return parser


def _add_start_date(parser: argparse.ArgumentParser, default: Optional[date] = None):
    kwargs = {"default": default} if default else {"required": True}
    help_text = "Start date (YYYY-MM-DD)"
    if default:
        help_text = f"{help_text} - defaults to this Monday"
    parser.add_argument("-s", "--startDate", dest="start_date", type=iso_date, help=help_text, **kwargs)


def _run(command: Callable[[argparse.Namespace, Config], None], args: argparse.Namespace) -> int:
    setup_logging(args.verbose)
    load_dotenv()

    try:
        command(args, Config.from_env())
    except Exception as e:
        logger.debug("Detailed error:", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


# --- calendar-auth ---


def _calendar_auth(args: argparse.Namespace, config: Config):
    if args.manual:
        receiver = ManualCodeReceiver(redirect_uri=f"http://localhost:{args.port}/")
    else:
        receiver = LocalServerReceiver(port=args.port)

    runner = OAuthFlowRunner(
        store=CredentialStore(config.token_path),
        client_secrets_path=config.client_secrets_path,
        validator=TokenValidator(config.calendar_id),
        receiver=receiver,
    )
    runner.authorize()
    print("\nGoogle Calendar authentication complete.")


def calendar_auth_main(argv=None) -> int:
    parser = _parser("Authorize read access to Google Calendar")
    parser.add_argument("--manual", action="store_true", help="Paste the authorization code instead of listening for it")
    parser.add_argument("--port", type=int, default=REDIRECT_PORT, help="Port for the OAuth callback server")
    return _run(_calendar_auth, parser.parse_args(argv))


# --- calendar-events ---


def _calendar_events(args: argparse.Namespace, config: Config):
    credentials = load_calendar_credentials(CredentialStore(config.token_path))
    date_range = DateRange.since(args.start_date)
    events = CalendarFetcher(credentials, config.calendar_id).fetch(date_range)
    print(format_calendar_events(normalize_all(events, "calendar"), args.start_date))


def calendar_events_main(argv=None) -> int:
    parser = _parser("List Google Calendar meetings since a date")
    _add_start_date(parser)
    return _run(_calendar_events, parser.parse_args(argv))


# --- merged-mrs ---


def _merged_mrs(args: argparse.Namespace, config: Config):
    fetcher = GitLabFetcher(config.require("gitlab_token"), config.gitlab_url)
    start = args.date or date.today() - timedelta(days=args.days)
    merge_requests = fetcher.fetch(DateRange.since(start))
    print(format_merge_requests(normalize_all(merge_requests, "gitlab"), start))


def merged_mrs_main(argv=None) -> int:
    parser = _parser("List GitLab merge requests you authored that were merged recently")
    parser.add_argument("-d", "--days", type=int, default=7, help="Number of days to look back")
    parser.add_argument("-t", "--date", type=iso_date, help="Start date in YYYY-MM-DD format")
    return _run(_merged_mrs, parser.parse_args(argv))


# --- monday-tasks ---


def _monday_tasks(args: argparse.Namespace, config: Config):
    fetcher = MondayFetcher(config.require("monday_api_key"), config.require("monday_board_id"))
    board_name, items = fetcher.fetch(DateRange.since(args.start_date))
    print(format_tasks(normalize_all(items, "monday"), args.start_date, board_name))


def monday_tasks_main(argv=None) -> int:
    parser = _parser("List Monday.com board items started or finished since a date")
    _add_start_date(parser)
    return _run(_monday_tasks, parser.parse_args(argv))


# --- todo-items ---


def _todo_items(args: argparse.Namespace, config: Config):
    fetcher = TodoFetcher(config.require("todo_api_key"), config.todo_base_url)
    tasks = fetcher.fetch(DateRange.since(args.start_date))
    print(format_tasks(normalize_all(tasks, "todo"), args.start_date))


def todo_items_main(argv=None) -> int:
    parser = _parser("List TODO service tasks started or finished since a date")
    _add_start_date(parser)
    return _run(_todo_items, parser.parse_args(argv))


# --- granola-notes ---


def _granola_notes(args: argparse.Namespace, config: Config):
    logger.info("Fetching Granola credentials...")
    fetcher = GranolaFetcher(load_granola_token(config.granola_credentials_path))

    logger.info("Fetching meeting notes from Granola...")
    notes = fetcher.fetch(
        DateRange.since(args.start_date),
        include_transcripts=args.transcripts,
        legacy_endpoints=args.legacy_endpoints,
    )
    print(format_granola_notes(normalize_all(notes, "granola")))


def granola_notes_main(argv=None) -> int:
    parser = _parser("Print Granola meeting notes since a date")
    _add_start_date(parser)
    parser.add_argument(
        "--no-transcripts",
        dest="transcripts",
        action="store_false",
        help="Skip the per-meeting transcript requests",
    )
    parser.add_argument(
        "--legacy-endpoints",
        action="store_true",
        help="Fall back to the v1 documents endpoint if v2 does not answer",
    )
    return _run(_granola_notes, parser.parse_args(argv))


# --- upload-granola ---


def _upload_granola(args: argparse.Namespace, config: Config):
    uploader = TodoFetcher(config.require("todo_api_key"), config.todo_base_url)
    start = date.today() - timedelta(days=args.days)

    logger.info("Fetching Granola credentials...")
    fetcher = GranolaFetcher(load_granola_token(config.granola_credentials_path))

    logger.info(f"Fetching meeting notes from last {args.days} days (since {start.isoformat()})...")
    notes = fetcher.fetch(DateRange.since(start), include_transcripts=True)

    if not notes:
        print("No notes found for the specified date range.")
        return

    print(f"Found {len(notes)} notes. Uploading to TODO app...")
    result = uploader.upload_transcriptions(notes)
    print(f"Upload complete: {result}")


def upload_granola_main(argv=None) -> int:
    parser = _parser("Upload recent Granola notes and transcripts to the TODO service")
    parser.add_argument("-d", "--days", type=int, default=5, help="Number of days to look back")
    return _run(_upload_granola, parser.parse_args(argv))


# --- analyse-time ---


def _analyse_time(args: argparse.Namespace, config: Config):
    analysis = analyse_time_spent(config, DateRange.since(args.start_date))
    print("\n\nTime Analysis:\n")
    print(analysis)


def analyse_time_main(argv=None) -> int:
    parser = _parser("Analyze time spent since the start date (defaults to this Monday)")
    _add_start_date(parser, default=this_monday())
    return _run(_analyse_time, parser.parse_args(argv))
