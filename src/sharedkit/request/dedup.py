from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Optional, TypeVar

import structlog

from sharedkit.utils.time import Clock, monotonic_s

T = TypeVar("T")

log = structlog.get_logger("dedup")

DuplicateReason = Literal["in_progress", "recently_completed"]

_MESSAGES: dict[str, str] = {
    "in_progress": "Request is already in progress",
    "recently_completed": "Request was recently completed",
}

def _sort_keys(obj: Any, _seen: frozenset = frozenset()) -> Any:
    """
    Copy of obj with dict items ordered by str(key), recursively.
    Lists and tuples keep their order. Raises ValueError on a cycle.
    """
    if isinstance(obj, (dict, list, tuple)):
        if id(obj) in _seen:
            raise ValueError("circular reference")
        seen = _seen | {id(obj)}
        if isinstance(obj, dict):
            return {
                str(k): _sort_keys(v, seen)
                for k, v in sorted(obj.items(), key=lambda kv: str(kv[0]))
            }
        return [_sort_keys(v, seen) for v in obj]
    return obj

def _consume_exception(task: asyncio.Task) -> None:
    # waiters may all be gone (cancelled, or entry dropped by cleanup)
    if not task.cancelled():
        task.exception()

class DuplicateRequestError(Exception):
    """Raised when a submission is rejected as a duplicate."""
    def __init__(self, reason: DuplicateReason):
        super().__init__(_MESSAGES[reason])
        self.reason: DuplicateReason = reason

@dataclass(slots=True)
class ExecuteOptions:
    method: str
    url: str
    data: Any = None
    block_after_complete_s: float = 0.0  # 0 -> no cool-down

@dataclass(slots=True)
class DedupStats:
    pending_count: int
    completed_count: int

class RequestDeduplicator:
    """
    Single-flight for async operations keyed by a request fingerprint.

    - deduplicate(): concurrent callers with the same key share one execution
      and see the same result or exception.
    - execute(): same, keyed by generate_key(method, url, data), plus an
      optional cool-down that rejects resubmission shortly after success.

    The shared execution runs as a task; callers await it through
    asyncio.shield so one cancelled caller does not cancel it for the rest.
    """

    # cleanup() also forgets every pending entry, stuck or not. The underlying
    # task keeps running; a new caller for the same key may start a second one.
    DROP_PENDING_ON_CLEANUP = True

    def __init__(self, *, clock: Clock = monotonic_s):
        self._clock = clock
        self._pending: dict[str, asyncio.Task] = {}
        self._completed: dict[str, float] = {}  # key -> completion ts
        self._cleanup_task: Optional[asyncio.Task] = None

    # ---- fingerprint ----

    @staticmethod
    def generate_key(method: str, url: str, data: Any = None) -> str:
        data_key = ""
        if data is not None:
            try:
                data_key = json.dumps(
                    _sort_keys(data), separators=(",", ":"), ensure_ascii=False, default=str
                )
            except ValueError:
                # cyclic payload
                data_key = str(data)
        return f"{method.upper()}:{url}:{data_key}"

    # ---- single-flight ----

    async def deduplicate(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        task = self._pending.get(key)
        if task is None:
            task = self._spawn(key, operation, block_after_complete_s=0.0)
        return await asyncio.shield(task)

    async def execute(self, options: ExecuteOptions, operation: Callable[[], Awaitable[T]]) -> T:
        key = self.generate_key(options.method, options.url, options.data)
        block = options.block_after_complete_s

        if block > 0:
            done_at = self._completed.get(key)
            if done_at is not None and self._clock() - done_at < block:
                log.info("dedup_recently_completed", key=key)
                raise DuplicateRequestError("recently_completed")

        task = self._pending.get(key)
        if task is None:
            task = self._spawn(key, operation, block_after_complete_s=block)
        else:
            log.debug("dedup_join_in_flight", key=key)
        return await asyncio.shield(task)

    def _spawn(self, key: str, operation: Callable[[], Awaitable[T]], *, block_after_complete_s: float) -> asyncio.Task:
        task = asyncio.ensure_future(self._run(key, operation, block_after_complete_s))
        task.add_done_callback(_consume_exception)
        self._pending[key] = task
        return task

    async def _run(self, key: str, operation: Callable[[], Awaitable[T]], block_after_complete_s: float) -> T:
        me = asyncio.current_task()
        try:
            result = await operation()
        finally:
            # a cleanup() may have replaced us; only drop our own entry
            if self._pending.get(key) is me:
                del self._pending[key]
        if block_after_complete_s > 0:
            self._completed[key] = self._clock()
        return result

    # ---- maintenance ----

    def cleanup(self, max_age_s: float = 10.0) -> None:
        now = self._clock()
        stale = [k for k, ts in self._completed.items() if now - ts > max_age_s]
        for k in stale:
            del self._completed[k]
        if self.DROP_PENDING_ON_CLEANUP:
            self._forget_pending()

    def _forget_pending(self) -> None:
        if self._pending:
            log.info("dedup_forget_pending", count=len(self._pending))
        self._pending.clear()

    def start_auto_cleanup(self, interval_s: float = 60.0) -> None:
        """Run cleanup() every interval_s on the running loop. No-op if already running."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._cleanup_loop(interval_s), name="dedup-cleanup"
        )

    def stop_auto_cleanup(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    @property
    def auto_cleanup_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    async def _cleanup_loop(self, interval_s: float) -> None:
        try:
            while True:
                await asyncio.sleep(interval_s)
                try:
                    self.cleanup()
                except Exception as e:
                    log.warning("dedup_cleanup_failed", err=str(e))
        except asyncio.CancelledError:
            return

    def get_stats(self) -> DedupStats:
        return DedupStats(pending_count=len(self._pending), completed_count=len(self._completed))

    def clear(self) -> None:
        self._pending.clear()
        self._completed.clear()


# process-wide convenience instance, created on first use, never torn down
_default_deduplicator: Optional[RequestDeduplicator] = None

def get_default_deduplicator() -> RequestDeduplicator:
    global _default_deduplicator
    if _default_deduplicator is None:
        _default_deduplicator = RequestDeduplicator()
    return _default_deduplicator
