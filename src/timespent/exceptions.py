"""
Exceptions

Every failure that should stop a command derives from TimeSpentError so the
CLI can report it and exit with status 1.
"""

from typing import Optional


class TimeSpentError(Exception):
    """Base class for all timespent errors"""


class ConfigError(TimeSpentError):
    """Required setting, secret file or prompt file is missing or unreadable"""


class AuthorizationError(TimeSpentError):
    """OAuth flow failed or a stored token was rejected"""


class ApiError(TimeSpentError):
    """Upstream API answered with a non-success status or an error payload"""

    def __init__(self, service: str, status: Optional[int], body: str = ""):
        self.service = service
        self.status = status
        self.body = body

        if status is None:
            message = f"{service} request failed: {body}"
        else:
            message = f"{service} request failed with status {status}"
            if body:
                message = f"{message}: {body}"

        super().__init__(message)

    @classmethod
    def from_response(cls, service: str, response) -> "ApiError":
        """Build an error from a requests.Response"""
        return cls(service, response.status_code, response.text)


def check_response(service: str, response):
    """
    Raise ApiError unless the response status is 2xx

    Args:
        service: Human readable service name for the message
        response: requests.Response

    Returns:
        The same response, for chaining
    """
    if not response.ok:
        raise ApiError.from_response(service, response)
    return response
