"""
Maps backend-specific exceptions onto the closed FailureKind set.
"""

from typing import Optional
import asyncio
import json

import anthropic
import httpx
import openai
from pydantic import ValidationError

from cognitive_profiler.exceptions import MalformedResponseError, ProviderNotConfiguredError
from cognitive_profiler.models.contracts import FailureKind

_TIMEOUT_ERRORS = (
    asyncio.TimeoutError,
    TimeoutError,
    httpx.TimeoutException,
    openai.APITimeoutError,
    anthropic.APITimeoutError,
)
_QUOTA_ERRORS = (openai.RateLimitError, anthropic.RateLimitError)
_MALFORMED_ERRORS = (MalformedResponseError, json.JSONDecodeError, ValidationError)
_UNAVAILABLE_ERRORS = (
    ProviderNotConfiguredError,
    httpx.TransportError,
    openai.APIConnectionError,
    anthropic.APIConnectionError,
    ConnectionError,
)


def _status_code(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def classify_error(exc: BaseException) -> FailureKind:
    """
    Classify an exception raised while calling a provider.

    Order matters: SDK timeout errors subclass their connection errors.
    """
    if isinstance(exc, _TIMEOUT_ERRORS):
        return FailureKind.TIMEOUT
    if isinstance(exc, _QUOTA_ERRORS):
        return FailureKind.QUOTA_EXCEEDED
    if isinstance(exc, _MALFORMED_ERRORS):
        return FailureKind.MALFORMED
    if isinstance(exc, _UNAVAILABLE_ERRORS):
        return FailureKind.UNAVAILABLE

    status = _status_code(exc)
    if status is not None:
        if status in (402, 429):
            return FailureKind.QUOTA_EXCEEDED
        if status in (408, 504):
            return FailureKind.TIMEOUT
        if status >= 500 or status in (401, 403):
            return FailureKind.UNAVAILABLE
    return FailureKind.UNKNOWN
