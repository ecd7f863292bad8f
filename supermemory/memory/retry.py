"""
Bounded retry with exponential backoff for hosted backend calls.

Each attempt runs under its own timeout. Transient failures (timeouts,
connection errors, rate limits, 5xx) are retried; anything else fails the
operation immediately. Errors raised by this package pass through untouched.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

import asyncpg
import httpx
import openai
import urllib3
from google.genai import errors as genai_errors

from ..errors import (
    BackendUnavailableError,
    SupermemoryError,
    TransientBackendError,
)

logger = logging.getLogger("supermemory.memory.retry")

T = TypeVar("T")

TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}

# SDK exceptions that signal a network fault, throttling or an overloaded
# server, whatever status (if any) they carry.
TRANSIENT_SDK_ERRORS: tuple[type[BaseException], ...] = (
    # openai / OpenRouter (APITimeoutError is an APIConnectionError)
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
    # chromadb HttpClient and google-genai transport
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    # pinecone REST transport
    urllib3.exceptions.TimeoutError,
    urllib3.exceptions.ProtocolError,
    urllib3.exceptions.MaxRetryError,
    # pgvector pool
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.exceptions.CannotConnectNowError,
)


def _status_code(exc: BaseException) -> int | None:
    """Best-effort HTTP status extraction across SDK exception types."""
    if isinstance(exc, genai_errors.APIError):
        # google-genai keeps the HTTP code in ``code``; ``status`` is a string
        return exc.code if isinstance(exc.code, int) else None
    for attr in ("status_code", "status", "http_status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_transient(exc: BaseException) -> bool:
    """Return True if the exception looks like a retryable backend failure."""
    if isinstance(exc, TransientBackendError):
        return True
    if isinstance(exc, SupermemoryError):
        return False
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, TRANSIENT_SDK_ERRORS):
        return True
    return _status_code(exc) in TRANSIENT_STATUS_CODES


async def with_retries(
    backend: str,
    operation: str,
    call: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 0.5,
    timeout: float | None = 30.0,
) -> T:
    """
    Run ``call`` with a per-attempt timeout, retrying transient failures.

    Args:
        backend: Backend name used in logs and errors (e.g. "pinecone").
        operation: Operation name used in logs and errors (e.g. "query").
        call: Zero-argument factory returning a fresh awaitable per attempt.
        max_attempts: Total attempts including the first one.
        base_delay: Initial backoff in seconds, doubled after each failure.
        timeout: Per-attempt timeout in seconds (None disables it).

    Returns:
        Whatever ``call`` resolves to.

    Raises:
        BackendUnavailableError: Retries exhausted or a non-transient failure.
        SupermemoryError: Errors from this package are re-raised unchanged.
    """
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            if timeout is None:
                return await call()
            return await asyncio.wait_for(call(), timeout=timeout)
        except SupermemoryError as e:
            if not isinstance(e, TransientBackendError):
                raise
            last_error: BaseException = e
        except Exception as e:
            if not is_transient(e):
                logger.error(f"{backend} {operation} failed: {e}")
                raise BackendUnavailableError(backend, operation, str(e)) from e
            last_error = e

        if attempt == attempts:
            break
        delay = base_delay * (2 ** (attempt - 1)) + random.uniform(0, base_delay / 2)
        logger.warning(
            f"{backend} {operation} attempt {attempt}/{attempts} failed "
            f"({type(last_error).__name__}: {last_error}); retrying in {delay:.2f}s"
        )
        await asyncio.sleep(delay)

    logger.error(f"{backend} {operation} failed after {attempts} attempts: {last_error}")
    raise BackendUnavailableError(
        backend, operation, f"retries exhausted: {last_error}"
    ) from last_error
