"""
Monday.com Fetcher

Items from one Monday.com board whose Started or Finished date falls in the
requested range. Items typed Personal are dropped.
"""

import logging
from typing import Any

import requests

from timespent.exceptions import ApiError, check_response
from timespent.normalizer import (
    DateRange,
    is_personal,
    monday_column_date,
    normalize_monday_item,
    parse_date,
)

logger = logging.getLogger(__name__)

MONDAY_API_ENDPOINT = "https://api.monday.com/v2"

BOARD_QUERY = """
query ($boardIds: [ID!]) {
  boards (ids: $boardIds) {
    name
    columns {
      id
      title
      type
    }
    items_page {
      items {
        id
        name
        column_values {
          column {
            id
            title
          }
          text
          value
        }
      }
    }
  }
}
"""


def item_in_range(item: dict[str, Any], date_range: DateRange) -> bool:
    """True if either the Started or the Finished column is inside the range"""
    for title in ("Started", "Finished"):
        moment = parse_date(monday_column_date(item, title))
        if moment is not None and date_range.contains(moment):
            return True
    return False


class MondayFetcher:
    """Fetch board items through the Monday.com GraphQL API"""

    TIMEOUT = 30

    def __init__(self, api_key: str, board_id: str):
        self.api_key = api_key
        self.board_id = str(board_id)

    def fetch_board(self) -> dict[str, Any]:
        """
        Raw board with its first page of items

        Raises:
            ApiError: HTTP failure, GraphQL errors, or no such board
        """
        logger.info(f"Fetching Monday.com board {self.board_id}")
        response = requests.post(
            MONDAY_API_ENDPOINT,
            headers={"Content-Type": "application/json", "Authorization": self.api_key},
            json={"query": BOARD_QUERY, "variables": {"boardIds": [self.board_id]}},
            timeout=self.TIMEOUT,
        )
        check_response("Monday.com", response)

        data = response.json()
        if data.get("errors"):
            raise ApiError("Monday.com", response.status_code, f"GraphQL Error: {data['errors']}")

        boards = (data.get("data") or {}).get("boards") or []
        if not boards:
            raise ApiError("Monday.com", None, f"Board {self.board_id} not found")
        return boards[0]

    def fetch(self, date_range: DateRange) -> tuple[str, list[dict[str, Any]]]:
        """
        Board name and the non-personal items dated inside the range

        Returns:
            (board name, list of item dictionaries)
        """
        board = self.fetch_board()
        items = (board.get("items_page") or {}).get("items") or []

        in_range = [item for item in items if item_in_range(item, date_range)]
        kept = [item for item in in_range if not is_personal(normalize_monday_item(item))]

        logger.info(
            f"Board {board.get('name')}: {len(items)} items, {len(in_range)} in range, "
            f"{len(in_range) - len(kept)} personal skipped"
        )
        return board.get("name") or "", kept
