"""
Calendar Fetcher

List the events on the configured Google Calendar between a start date and
the end of today.
"""

import logging
from typing import Any, Optional

from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.errors import HttpError

from timespent.credential_store import CredentialStore
from timespent.exceptions import ApiError, AuthorizationError
from timespent.normalizer import CALENDAR_START_FIELDS, DateRange, record_in_range
from timespent.token_validator import build_calendar_service

logger = logging.getLogger(__name__)

MAX_RESULTS = 1000
REAUTH_HINT = "Please run: calendar-auth"


def load_calendar_credentials(store: CredentialStore) -> Credentials:
    """
    Saved credentials for listing events; never starts an OAuth flow

    Raises:
        AuthorizationError: If no usable token is saved
    """
    credentials = store.load()
    if credentials is None:
        raise AuthorizationError(f"No valid authentication token found. {REAUTH_HINT}")
    return credentials


class CalendarFetcher:
    """Fetch events from Google Calendar"""

    def __init__(self, credentials: Credentials, calendar_id: str = "primary", service: Optional[Any] = None):
        self.calendar_id = calendar_id
        self.service = service or build_calendar_service(credentials)

    def fetch(self, date_range: DateRange) -> list[dict[str, Any]]:
        """
        Events starting inside the date range

        Raises:
            AuthorizationError: Token expired or revoked
            ApiError: Any other Calendar API error
        """
        time_min = date_range.start.isoformat()
        logger.info(f"Fetching events from: {time_min}")

        try:
            result = self.service.events().list(
                calendarId=self.calendar_id,
                timeMin=time_min,
                maxResults=MAX_RESULTS,
                singleEvents=True,
                orderBy="startTime",
            ).execute()
        except RefreshError as e:
            raise AuthorizationError(f"Authentication token is invalid or expired. {REAUTH_HINT}") from e
        except HttpError as e:
            if e.resp.status == 401:
                raise AuthorizationError(
                    f"Authentication token is invalid or expired. {REAUTH_HINT}"
                ) from e
            body = e.content.decode("utf-8", errors="replace") if e.content else str(e)
            raise ApiError("Google Calendar", e.resp.status, body) from e

        events = result.get("items", []) or []
        if len(events) >= MAX_RESULTS:
            logger.warning(f"Calendar returned {MAX_RESULTS} events; later events were not fetched")

        filtered = [event for event in events if record_in_range(event, CALENDAR_START_FIELDS, date_range)]
        logger.info(f"Found {len(filtered)} events in range ({len(events)} returned)")
        return filtered
