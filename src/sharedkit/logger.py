from __future__ import annotations

import logging
import random
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional, TextIO

import structlog

from sharedkit.utils.time import elapsed_ms, monotonic_s

_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_ALWAYS_LOGGED = ("error", "critical", "exception")

@dataclass(slots=True, frozen=True)
class LoggerConfig:
    enabled: bool = True
    level: str = "debug"
    show_timestamp: bool = False
    module: Optional[str] = None       # overrides the namespace shown in output
    sampling_rate: float = 1.0         # 0..1, errors are never sampled out
    colors: bool = False

class _Sampler:
    """structlog processor dropping non-error events with probability 1 - rate."""
    def __init__(self, rate: float):
        self.rate = rate

    def __call__(self, logger, method_name: str, event_dict: dict) -> dict:
        if method_name in _ALWAYS_LOGGED or self.rate >= 1.0:
            return event_dict
        if random.random() >= self.rate:
            raise structlog.DropEvent
        return event_dict

def _drop_all(logger, method_name: str, event_dict: dict) -> dict:
    raise structlog.DropEvent

def _min_level(cfg: LoggerConfig) -> int:
    try:
        return _LEVELS[cfg.level.lower()]
    except KeyError:
        raise ValueError(f"unknown log level: {cfg.level!r}") from None

def create_logger(namespace: str, cfg: LoggerConfig | None = None, *, file: TextIO | None = None) -> Any:
    """
    Bound structlog logger tagged with `namespace` (or cfg.module), filtered
    by cfg.level, sampled by cfg.sampling_rate.
    """
    cfg = cfg or LoggerConfig()
    processors: list[Any] = [
        _Sampler(cfg.sampling_rate) if cfg.enabled else _drop_all,
        structlog.processors.add_log_level,
    ]
    if cfg.show_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors.append(structlog.dev.ConsoleRenderer(colors=cfg.colors))

    return structlog.wrap_logger(
        structlog.PrintLogger(file or sys.stdout),
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_min_level(cfg)),
        namespace=cfg.module or namespace,
    )

class ModuleLogger:
    """
    Namespaced logger with a few conveniences on top of the level methods:
    success/failure markers, nested groups and a timed() block.

    Inside group(title) ... group_end(), every event carries
    group="outer/inner" and depth=N.
    """
    def __init__(self, module: str, cfg: LoggerConfig | None = None, *, file: TextIO | None = None):
        self.module = module
        self._base = create_logger(module, cfg, file=file)
        self._log = self._base
        self._groups: list[str] = []

    def debug(self, event: str, **kw: Any) -> None:
        self._log.debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._log.info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._log.warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._log.error(event, **kw)

    def success(self, event: str, **kw: Any) -> None:
        self._log.info(event, outcome="success", **kw)

    def failure(self, event: str, **kw: Any) -> None:
        self._log.error(event, outcome="failure", **kw)

    def bind(self, **kw: Any) -> Any:
        return self._log.bind(**kw)

    def group(self, title: str) -> None:
        self._groups.append(title)
        self._rebind()
        self._log.info("group_start")

    def group_end(self) -> None:
        if not self._groups:
            return
        self._log.info("group_end")
        self._groups.pop()
        self._rebind()

    @contextmanager
    def grouped(self, title: str) -> Iterator[None]:
        self.group(title)
        try:
            yield
        finally:
            self.group_end()

    def _rebind(self) -> None:
        if self._groups:
            self._log = self._base.bind(group="/".join(self._groups), depth=len(self._groups))
        else:
            self._log = self._base

    @contextmanager
    def timed(self, label: str) -> Iterator[None]:
        t0 = monotonic_s()
        try:
            yield
        finally:
            self._log.info(label, elapsed_ms=elapsed_ms(t0))

def create_module_logger(module: str, cfg: LoggerConfig | None = None, *, file: TextIO | None = None) -> ModuleLogger:
    return ModuleLogger(module, cfg, file=file)

# process-wide "App" logger, created on first use
_default_logger: Any = None

def get_default_logger() -> Any:
    global _default_logger
    if _default_logger is None:
        _default_logger = create_logger("App")
    return _default_logger
