from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import aiohttp
import structlog

from sharedkit.utils.backoff import additive_jitter, capped, exp_backoff

T = TypeVar("T")

log = structlog.get_logger("retry")

@dataclass(slots=True, frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    retryable_statuses: tuple[int, ...] = (408, 429, 500, 502, 503, 504)
    retryable_errors: tuple[str, ...] = ("ECONNABORTED", "ENOTFOUND", "ECONNRESET", "ETIMEDOUT", "ERR_NETWORK")

DEFAULT_RETRY_CONFIG = RetryConfig()

# per-request-class timeouts (seconds)
DEFAULT_TIMEOUTS: dict[str, float] = {
    "fast": 5.0,
    "default": 15.0,
    "upload": 60.0,
    "batch": 120.0,
    "long": 180.0,
}

def calculate_retry_delay(attempt: int, cfg: RetryConfig = DEFAULT_RETRY_CONFIG) -> float:
    """
    Exponential backoff with up to +10% jitter, capped at max_delay_s.
    attempt=0 -> ~base, 1 -> ~2*base, ...
    """
    return capped(additive_jitter(exp_backoff(attempt, cfg.base_delay_s), ratio=0.1), cfg.max_delay_s)

def is_status_retryable(status: int, cfg: RetryConfig = DEFAULT_RETRY_CONFIG) -> bool:
    return status in cfg.retryable_statuses

def is_error_retryable(code: Optional[str], cfg: RetryConfig = DEFAULT_RETRY_CONFIG) -> bool:
    if not code or not cfg.retryable_errors:
        return False
    return code in cfg.retryable_errors

def error_code(exc: BaseException) -> Optional[str]:
    """Map a transport exception to a network error code, or None if it isn't one."""
    if isinstance(exc, asyncio.TimeoutError):
        return "ETIMEDOUT"
    if isinstance(exc, aiohttp.ClientConnectorDNSError):
        return "ENOTFOUND"
    if isinstance(exc, ConnectionResetError):
        return "ECONNRESET"
    if isinstance(exc, ConnectionAbortedError):
        return "ECONNABORTED"
    if isinstance(exc, aiohttp.ClientConnectionError):
        return "ERR_NETWORK"
    return None

def _should_retry(exc: BaseException, cfg: RetryConfig) -> bool:
    if isinstance(exc, aiohttp.ClientResponseError):
        return is_status_retryable(exc.status, cfg)
    return is_error_retryable(error_code(exc), cfg)

async def retry_async(
    operation: Callable[[], Awaitable[T]],
    cfg: RetryConfig = DEFAULT_RETRY_CONFIG,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await operation(), retrying up to cfg.max_retries times on retryable
    HTTP statuses (aiohttp.ClientResponseError) and network errors.
    Non-retryable errors and the last failure propagate unchanged.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= cfg.max_retries or not _should_retry(e, cfg):
                if attempt:
                    log.error("retry_give_up", attempts=attempt + 1, err=str(e))
                raise
            delay = calculate_retry_delay(attempt, cfg)
            log.warning(
                "retry_scheduled",
                attempt=attempt + 1,
                status=getattr(e, "status", None),
                code=error_code(e),
                delay_s=round(delay, 3),
            )
            attempt += 1
            await sleep(delay)
