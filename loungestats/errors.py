"""
errors.py
---------

Exception hierarchy shared by the lounge client, the store and the sync
engine. Callers usually only need :class:`LoungeError`.
"""

from __future__ import annotations

from typing import Optional


class LoungeError(Exception):
    """Base class for every error raised by this package."""


class InvalidArgument(LoungeError, ValueError):
    """A caller supplied an unusable identifier or option."""


class NotFound(LoungeError):
    """The remote API answered 404 for the requested resource."""

    status_code = 404


class RequestFailed(LoungeError):
    """Non-2xx answer from the remote API."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientError(RequestFailed):
    """5xx, 429 or a connection problem. Worth retrying."""


class ClientError(RequestFailed):
    """4xx other than 404/429. Retrying will not help."""


class StoreError(LoungeError):
    """Reading from or writing to the local store failed."""


__all__ = [
    "LoungeError",
    "InvalidArgument",
    "NotFound",
    "RequestFailed",
    "TransientError",
    "ClientError",
    "StoreError",
]
