"""Failure taxonomy for calls against the model provider.

The retry ladder picks its reaction from the exception class:
  - RateLimited          -> rotate to the next key, back off
  - InvalidCredential    -> evict the key, retry at once
  - ProviderTimeout      -> rotate, back off
  - EmptyResponse        -> rotate, back off
  - RequestRejected      -> escalate to the next degradation state
  - UnknownProviderError -> rotate, back off
"""

from typing import Optional


class ProviderError(Exception):
    """Base class for every classified provider failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimited(ProviderError):
    """HTTP 429 or a quota-exceeded signal."""


class InvalidCredential(ProviderError):
    """The API key is invalid, expired or lacks permission."""


class ProviderTimeout(ProviderError):
    """No response within the per-call timeout."""


class EmptyResponse(ProviderError):
    """The call succeeded but carried no text."""


class UnknownProviderError(ProviderError):
    """Any other transport or protocol failure."""


class RequestRejected(UnknownProviderError):
    """The provider refused the request content itself (HTTP 400)."""
