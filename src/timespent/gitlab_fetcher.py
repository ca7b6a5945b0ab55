"""
GitLab Fetcher

Merged merge requests authored by the token's owner.
"""

import logging
from typing import Any

import requests

from timespent.exceptions import check_response
from timespent.normalizer import DateRange

logger = logging.getLogger(__name__)

PER_PAGE = 100


class GitLabFetcher:
    """Fetch merged MRs from the GitLab REST API"""

    TIMEOUT = 30

    def __init__(self, token: str, base_url: str = "https://gitlab.com/api/v4"):
        self.token = token
        self.base_url = base_url.rstrip("/")

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = requests.get(
            f"{self.base_url}{path}",
            headers={"PRIVATE-TOKEN": self.token},
            params=params,
            timeout=self.TIMEOUT,
        )
        check_response("GitLab", response)
        return response.json()

    def current_user_id(self) -> int:
        return self._get("/user")["id"]

    def fetch(self, date_range: DateRange) -> list[dict[str, Any]]:
        """
        Merged MRs updated on or after the start of the range

        Returns:
            List of merge request dictionaries, newest first as GitLab orders them
        """
        user_id = self.current_user_id()
        since = date_range.start.strftime("%Y-%m-%d")

        logger.info(f"Fetching merged MRs for user {user_id} since {since}")
        merge_requests = self._get(
            "/merge_requests",
            params={
                "state": "merged",
                "author_id": user_id,
                "updated_after": f"{since}T00:00:00Z",
                "scope": "all",
                "per_page": PER_PAGE,
            },
        )

        if len(merge_requests) >= PER_PAGE:
            logger.warning(f"GitLab returned a full page of {PER_PAGE} MRs; later pages were not fetched")

        logger.info(f"Found {len(merge_requests)} merged MRs")
        return merge_requests
