"""Exception types shared across the portal."""

from __future__ import annotations

from typing import Optional


class BookingPortalError(Exception):
    """Base class for errors the portal reports to the user."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ApiError(BookingPortalError):
    """The remote API answered with an error or could not be reached.

    ``status_code`` is ``None`` for transport failures (connection refused,
    DNS, timeouts) where no HTTP response was received.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BookingRangeError(BookingPortalError):
    """A proposed booking's time range is not acceptable."""


class InvalidStatusTransition(BookingPortalError):
    """A booking status change that is not allowed from its current status."""


class MutationFailed(BookingPortalError):
    """A create/update/delete/status change was rejected; nothing was applied."""

    def __init__(self, action: str, cause: BookingPortalError) -> None:
        super().__init__(f"{action} failed: {cause.message}")
        self.action = action
        self.cause = cause
