"""
TODO Service Client

Read tasks from the personal TODO service and upload Granola notes to it as
transcriptions.
"""

import logging
from typing import Any

import requests

from timespent.exceptions import ApiError, check_response
from timespent.normalizer import (
    TODO_END_FIELDS,
    TODO_START_FIELDS,
    DateRange,
    is_personal,
    normalize_todo_task,
    record_in_range,
)

logger = logging.getLogger(__name__)


class TodoFetcher:
    """Client for the TODO service's tasks and transcriptions endpoints"""

    TIMEOUT = 30

    def __init__(self, api_key: str, base_url: str = "https://todo.boonwilliams.com/api"):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def fetch_tasks(self) -> list[dict[str, Any]]:
        logger.info("Fetching tasks from TODO service")
        response = requests.get(f"{self.base_url}/tasks", headers=self._headers(), timeout=self.TIMEOUT)
        check_response("TODO service", response)

        tasks = response.json()
        if not isinstance(tasks, list):
            raise ApiError("TODO service", response.status_code, "Expected a list of tasks")
        return [task for task in tasks if isinstance(task, dict)]

    def fetch(self, date_range: DateRange) -> list[dict[str, Any]]:
        """
        Non-personal tasks started or finished inside the range
        """
        tasks = self.fetch_tasks()
        in_range = [
            task
            for task in tasks
            if record_in_range(task, TODO_START_FIELDS, date_range)
            or record_in_range(task, TODO_END_FIELDS, date_range)
        ]
        kept = [task for task in in_range if not is_personal(normalize_todo_task(task))]
        logger.info(f"{len(kept)} of {len(tasks)} tasks in range after dropping personal ones")
        return kept

    def upload_transcriptions(self, notes: list[dict[str, Any]]) -> Any:
        """
        Upload Granola notes as transcriptions

        Args:
            notes: Raw Granola documents (transcripts attached)

        Returns:
            The service's JSON reply

        Raises:
            ApiError: Upload rejected, with status and body
        """
        transcriptions = [
            {"source": "granola", "source_id": note.get("id"), "raw_data": note}
            for note in notes
        ]

        logger.info(f"Uploading {len(transcriptions)} transcriptions")
        response = requests.post(
            f"{self.base_url}/transcriptions",
            headers=self._headers(),
            json=transcriptions,
            timeout=self.TIMEOUT,
        )
        check_response("TODO service upload", response)

        try:
            return response.json()
        except ValueError:
            return response.text
