"""
Token Validator

Check a saved Google credential by asking the Calendar API for a single event.

Any failure counts as an invalid token: an expired grant, a revoked grant and
an unreachable network all lead to deleting the token and re-authorizing.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

logger = logging.getLogger(__name__)


def build_calendar_service(credentials: Credentials):
    """Return a Calendar v3 service for the given credentials"""
    return build("calendar", "v3", credentials=credentials, cache_discovery=False)


class TokenValidator:
    """Probe the Calendar API with a saved credential"""

    def __init__(
        self,
        calendar_id: str = "primary",
        service_factory: Optional[Callable[[Credentials], object]] = None,
    ):
        self.calendar_id = calendar_id
        self.service_factory = service_factory or build_calendar_service

    def validate(self, credentials: Credentials) -> bool:
        """
        Check that the credential can still read the calendar

        Args:
            credentials: Loaded credentials

        Returns:
            True if the probe succeeded, False on any error
        """
        try:
            service = self.service_factory(credentials)
            service.events().list(
                calendarId=self.calendar_id,
                timeMin=datetime.now(timezone.utc).isoformat(),
                maxResults=1,
                singleEvents=True,
                orderBy="startTime",
            ).execute()
        except Exception as e:
            logger.warning(f"Token validation failed: {e}")
            return False

        logger.info("Valid token found.")
        return True
