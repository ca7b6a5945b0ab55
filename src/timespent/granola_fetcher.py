"""
Granola Document Fetcher

Fetch meeting documents and transcripts from the Granola API.

Based on Joseph Thacker's reverse engineering:
https://josephthacker.com/hacking/2025/05/08/reverse-engineering-granola-notes.html
"""

import logging
from typing import Any

import requests

from timespent.exceptions import ApiError, check_response
from timespent.normalizer import GRANOLA_DATE_FIELDS, DateRange, record_in_range

logger = logging.getLogger(__name__)

GRANOLA_API_V1 = "https://api.granola.ai/v1"
GRANOLA_API_V2 = "https://api.granola.ai/v2"

PAGE_SIZE = 100


class GranolaFetcher:
    """Fetch documents from Granola API"""

    API_VERSION = "5.354.0"
    TIMEOUT = 30

    # Newest first; discover_documents() walks the whole list
    DOCUMENT_ENDPOINTS = [
        f"{GRANOLA_API_V2}/get-documents",
        f"{GRANOLA_API_V1}/get-documents",
    ]

    def __init__(self, token: str):
        """
        Initialize Granola fetcher

        Args:
            token: Granola access token (see credential_store.load_granola_token)
        """
        if not token:
            raise ValueError("Granola access token not available")

        self.token = token
        logger.debug("GranolaFetcher initialized")

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Accept": "*/*",
            "User-Agent": f"Granola/{self.API_VERSION}",
            "X-Client-Version": self.API_VERSION,
        }

    @staticmethod
    def _unwrap_documents(data: Any) -> list[dict[str, Any]]:
        """Pull the document list out of whichever envelope the API used"""
        if isinstance(data, dict):
            if "docs" in data:
                data = data["docs"]
            for key in ("documents", "meetings", "notes"):
                if isinstance(data, dict) and key in data:
                    data = data[key]
                    break

        if not isinstance(data, list):
            logger.warning("No document list in Granola response")
            if isinstance(data, dict):
                logger.debug(f"Response keys: {list(data.keys())}")
            return []

        return [doc for doc in data if isinstance(doc, dict)]

    def _post_documents(self, url: str, limit: int, offset: int) -> list[dict[str, Any]]:
        payload = {"limit": limit, "offset": offset, "include_last_viewed_panel": True}

        logger.info(f"Fetching documents from Granola API (limit={limit}, offset={offset})")
        response = requests.post(url, headers=self._headers(), json=payload, timeout=self.TIMEOUT)
        check_response("Granola", response)

        try:
            data = response.json()
        except ValueError as e:
            raise ApiError("Granola", response.status_code, f"Invalid JSON response: {e}") from e

        documents = self._unwrap_documents(data)
        logger.info(f"Successfully fetched {len(documents)} documents")

        if len(documents) >= limit:
            logger.warning(
                f"Granola returned a full page of {limit} documents; older documents were not fetched"
            )
        return documents

    def fetch_documents(self, limit: int = PAGE_SIZE, offset: int = 0) -> list[dict[str, Any]]:
        """
        Fetch one page of documents from the v2 endpoint

        Args:
            limit: Maximum number of documents to fetch
            offset: Offset for pagination

        Returns:
            List of document dictionaries

        Raises:
            ApiError: Non-success response or unreadable body
        """
        return self._post_documents(self.DOCUMENT_ENDPOINTS[0], limit, offset)

    def discover_documents(self, limit: int = PAGE_SIZE) -> list[dict[str, Any]]:
        """
        Try every known documents endpoint, newest first

        Used when the v2 endpoint is not available to an account; each
        failure is logged at debug level and the next endpoint is tried.

        Raises:
            ApiError: If no endpoint answered successfully
        """
        last_error = None
        for url in self.DOCUMENT_ENDPOINTS:
            try:
                documents = self._post_documents(url, limit, 0)
            except (ApiError, requests.exceptions.RequestException) as e:
                logger.debug(f"Endpoint {url} failed: {e}")
                last_error = e
                continue
            logger.info(f"Documents endpoint answering: {url}")
            return documents

        raise ApiError("Granola", None, f"No documents endpoint answered ({last_error})")

    def fetch_transcript(self, document_id: str) -> Any:
        """
        Fetch the transcript for one document

        Args:
            document_id: Granola document ID

        Returns:
            List of transcript entries (or whatever the API returned),
            None if it could not be fetched
        """
        url = f"{GRANOLA_API_V1}/get-document-transcript"
        try:
            response = requests.post(
                url,
                headers=self._headers(),
                json={"document_id": document_id},
                timeout=self.TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Transcript request failed for {document_id}: {e}")
            return None

        if not response.ok:
            logger.warning(f"No transcript for {document_id} (status {response.status_code})")
            return None

        try:
            data = response.json()
        except ValueError:
            logger.warning(f"Transcript for {document_id} was not JSON")
            return None

        if isinstance(data, dict) and "transcript" in data:
            return data["transcript"] or None
        return data or None

    def fetch(
        self,
        date_range: DateRange,
        include_transcripts: bool = True,
        legacy_endpoints: bool = False,
    ) -> list[dict[str, Any]]:
        """
        Documents dated inside the range, with transcripts attached

        Transcripts are fetched one document at a time.

        Args:
            date_range: Range to keep
            include_transcripts: Fetch a transcript for each kept document
            legacy_endpoints: Fall back to older documents endpoints when v2 fails
        """
        documents = self.discover_documents() if legacy_endpoints else self.fetch_documents()
        notes = [doc for doc in documents if record_in_range(doc, GRANOLA_DATE_FIELDS, date_range)]
        logger.info(f"{len(notes)} of {len(documents)} documents fall in the date range")

        if include_transcripts:
            for i, note in enumerate(notes, 1):
                if note.get("id"):
                    logger.debug(f"Fetching transcript {i}/{len(notes)}")
                    note["transcript"] = self.fetch_transcript(note["id"])

        return notes
