import asyncio
import errno
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import aiohttp

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

RETRYABLE_NETWORK_ERRORS = frozenset({
    "ECONNRESET",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ENOTFOUND",
    "ENETUNREACH",
    "EHOSTUNREACH",
    "EPIPE",
    "EAI_AGAIN",
})


class RemoteCallError(Exception):
    """A remote call finished with an unexpected HTTP status"""

    def __init__(self, status: int, message: str = ""):
        super().__init__(f"HTTP {status}{': ' + message if message else ''}")
        self.status = status


@dataclass
class RetryConfig:
    """Retry, backoff and timeout settings for outbound calls (seconds)"""
    max_retries: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 10.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.3
    request_timeout: float = 30.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.initial_backoff < 0 or self.max_backoff < 0:
            raise ValueError("Backoff durations cannot be negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if not 0 <= self.jitter_factor < 1:
            raise ValueError("jitter_factor must be within [0, 1)")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """
    Exponential backoff with jitter:
        min(initial * multiplier ** attempt, max) * (1 +/- jitter)

    attempt is 0-indexed.
    """
    exponential = config.initial_backoff * (config.backoff_multiplier ** attempt)
    capped = min(exponential, config.max_backoff)
    jitter = random.uniform(-1.0, 1.0) * capped * config.jitter_factor
    return max(0.0, capped + jitter)


def _error_status(error: BaseException) -> Optional[int]:
    status = getattr(error, "status", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status", None) or getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable_error(error: BaseException) -> bool:
    """
    Retryable: HTTP 408/429/5xx, transient network errors, timeouts.
    Everything else (400/401/403/404/422, bad payloads, bugs) is not.
    """
    status = _error_status(error)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES or 500 <= status < 600

    if isinstance(error, asyncio.TimeoutError):
        return True

    if isinstance(error, aiohttp.ClientConnectionError):
        return True

    if isinstance(error, OSError) and error.errno is not None:
        if errno.errorcode.get(error.errno) in RETRYABLE_NETWORK_ERRORS:
            return True

    code = getattr(error, "code", None)
    if isinstance(code, str) and code in RETRYABLE_NETWORK_ERRORS:
        return True

    message = str(error).lower()
    return "timeout" in message or "timed out" in message


def describe_error(error: BaseException) -> str:
    status = _error_status(error)
    if status is not None:
        return f"HTTP {status}"
    if isinstance(error, asyncio.TimeoutError):
        return "timeout"
    return f"{type(error).__name__}: {error}" if str(error) else type(error).__name__


async def safe_call(
    fn: Callable[[], Awaitable[T]],
    *,
    config: Optional[RetryConfig] = None,
    max_retries: Optional[int] = None,
    timeout: Optional[float] = None,
    context: str = "remote_call",
    log: Optional[logging.Logger] = None,
    retryable: Optional[Callable[[BaseException], bool]] = None,
) -> Optional[T]:
    """
    Run fn with a hard per-attempt timeout, retrying retryable failures
    with exponential backoff.

    Returns the result, or None when the call failed permanently or the
    retry budget ran out. Never raises for remote failures; callers treat
    None as "operation unavailable".

    retryable overrides is_retryable_error for calls that are not safe to
    repeat once the request may have reached the server.
    """
    config = config or RetryConfig()
    log = log or logger
    retryable = retryable or is_retryable_error
    retries = config.max_retries if max_retries is None else max_retries
    attempt_timeout = config.request_timeout if timeout is None else timeout
    attempts = retries + 1

    for attempt in range(attempts):
        try:
            # wait_for cancels the attempt when the timeout fires
            result = await asyncio.wait_for(fn(), timeout=attempt_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            can_retry = retryable(e)
            reason = describe_error(e)

            if can_retry and attempt < retries:
                backoff = calculate_backoff(attempt, config)
                log.warning(
                    f"[{context}] attempt {attempt + 1}/{attempts} failed ({reason}), "
                    f"retrying in {backoff:.2f}s"
                )
                await asyncio.sleep(backoff)
                continue

            if can_retry:
                log.error(f"[{context}] all {attempts} attempts exhausted, last error: {reason}")
            else:
                log.error(f"[{context}] non-retryable error on attempt {attempt + 1}/{attempts}: {reason}")
            return None

        if attempt > 0:
            log.info(f"[{context}] succeeded on attempt {attempt + 1}/{attempts}")
        else:
            log.debug(f"[{context}] succeeded on first attempt")
        return result

    return None
