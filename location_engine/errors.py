"""Typed failures raised at the fetcher and resolver boundary."""
from __future__ import annotations

from typing import Optional


class LocationError(Exception):
    """Base class for every failure the engine surfaces to an arbiter."""

    default_message = "Failed to fetch location data"

    def __init__(self, message: Optional[str] = None, *, status: Optional[int] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.status = status


class NetworkError(LocationError):
    """The backend could not be reached or answered with a server error."""

    default_message = "Cannot connect to the location service"


class RequestTimeoutError(LocationError):
    """The backend did not answer within the per-call timeout."""

    default_message = "The location service is taking too long to respond"


class NotFoundError(LocationError):
    """A well-formed call that matched nothing."""

    default_message = "Location not found"


class MalformedResponseError(LocationError):
    """The response body matched none of the known envelope shapes."""

    default_message = "Unrecognised response from the location service"


def user_hint(error: LocationError) -> str:
    """Return the message shown next to the city field for ``error``."""
    if isinstance(error, RequestTimeoutError):
        return "Backend is taking too long to respond. Please try again."
    if isinstance(error, NetworkError) and error.status == 404:
        return "Location endpoint not found. Please check the service configuration."
    if isinstance(error, NetworkError) and error.status is None:
        return "Cannot connect to the location service. Please check your connection."
    return error.message
