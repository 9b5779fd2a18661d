from __future__ import annotations

import os

from dotenv import load_dotenv

from sharedkit.cache.ttl_cache import CacheConfig
from sharedkit.http.retry import RetryConfig
from sharedkit.logger import LoggerConfig

load_dotenv()

PREFIX = "SHAREDKIT_"

def _env_bool(name: str, default: str) -> bool:
    return os.getenv(PREFIX + name, default).lower() in ("1", "true", "yes")

def _env_float(name: str, default: float) -> float:
    raw = os.getenv(PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{PREFIX}{name} must be a number, got {raw!r}") from None

def _env_int(name: str, default: int) -> int:
    raw = os.getenv(PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{PREFIX}{name} must be an integer, got {raw!r}") from None

def cache_config_from_env() -> CacheConfig:
    d = CacheConfig()
    return CacheConfig(
        default_ttl_s=_env_float("CACHE_TTL_S", d.default_ttl_s),
        max_size=_env_int("CACHE_MAX_SIZE", d.max_size),
        cleanup_interval_s=_env_float("CACHE_CLEANUP_S", d.cleanup_interval_s),
    )

def retry_config_from_env() -> RetryConfig:
    d = RetryConfig()
    return RetryConfig(
        max_retries=_env_int("RETRY_MAX", d.max_retries),
        base_delay_s=_env_float("RETRY_BASE_S", d.base_delay_s),
        max_delay_s=_env_float("RETRY_MAX_DELAY_S", d.max_delay_s),
    )

def logger_config_from_env() -> LoggerConfig:
    return LoggerConfig(
        enabled=_env_bool("LOG_ENABLED", "1"),
        level=os.getenv(PREFIX + "LOG_LEVEL", "debug"),
        show_timestamp=_env_bool("LOG_TIMESTAMP", "0"),
        sampling_rate=_env_float("LOG_SAMPLING", 1.0),
    )

def dedup_cleanup_interval_from_env() -> float:
    return _env_float("DEDUP_CLEANUP_S", 60.0)
