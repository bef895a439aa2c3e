"""Background scheduler for AI tag suggestions.

Sessions are admitted into a priority queue and processed one at a time by a
single worker thread, so at most one model request is in flight. Higher
priority tiers are always drained first; within a tier sessions are processed
in admission order.

Listeners subscribe with ``on(event, callback)``. Events:

- ``complete(session_id, suggestions)``: delivered at most once per queue
  admission, after the session has been processed. ``suggestions`` is empty
  when gathering or the model call failed.
- ``error(error, session_id)``: a session failed, or the worker paused itself
  after a systemic failure (``session_id`` is None in that case).
- ``progress(ScanProgress)``, ``queue_changed(size)``,
  ``status_changed(SchedulerStatus)``.

Listener exceptions are logged and never reach the worker.
"""

import heapq
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .client import TagSuggestionClient
from .config import AVG_SECONDS_PER_REQUEST, TaggerSettings
from .context import ContextGatherer, render_context
from .errors import AuthenticationError, TagSuggestionError
from .models import PRIORITY_RANKS, ScanProgress, SchedulerStatus, TagSuggestion
from .store import TagStore

logger = logging.getLogger(__name__)

EVENTS = ("complete", "error", "progress", "queue_changed", "status_changed")

# Upper bound on a single idle wait while rate limited
RATE_LIMIT_POLL_SECONDS = 60.0

# Sessions queued when the scheduler starts itself
AUTO_START_RECENT_SESSIONS = 10


@dataclass(order=True)
class QueueItem:
    sort_key: tuple = field(init=False, repr=False)
    session_id: str = field(compare=False)
    priority: str = field(compare=False)
    queued_at: float = field(compare=False)
    sequence: int = field(compare=False)
    valid: bool = field(default=True, compare=False)

    def __post_init__(self):
        self.sort_key = (-PRIORITY_RANKS[self.priority], self.sequence)


class ScanQueue:
    """Priority queue holding each session id at most once.

    Not thread-safe on its own; the scheduler guards it with its lock.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._heap: list[QueueItem] = []
        self._entries: dict[str, QueueItem] = {}
        self._counter = itertools.count()
        self._clock = clock

    def push(self, session_id: str, priority: str) -> bool:
        """Admit a session, or raise the priority of a queued one.

        Returns True if the queue changed. Re-queuing at an equal or lower
        priority is a no-op; an upgrade keeps the original admission order.
        """
        existing = self._entries.get(session_id)
        if existing is not None:
            if PRIORITY_RANKS[priority] <= PRIORITY_RANKS[existing.priority]:
                return False
            existing.valid = False
            item = QueueItem(
                session_id=session_id,
                priority=priority,
                queued_at=existing.queued_at,
                sequence=existing.sequence,
            )
        else:
            item = QueueItem(
                session_id=session_id,
                priority=priority,
                queued_at=self._clock(),
                sequence=next(self._counter),
            )
        self._entries[session_id] = item
        heapq.heappush(self._heap, item)
        return True

    def pop(self) -> Optional[QueueItem]:
        while self._heap:
            item = heapq.heappop(self._heap)
            if item.valid:
                del self._entries[item.session_id]
                return item
        return None

    def items(self) -> list[QueueItem]:
        """Live items in processing order."""
        return sorted(self._entries.values())

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class HourlyRateLimiter:
    """Token bucket refilled in full once per interval."""

    def __init__(
        self,
        max_tokens: int,
        refill_interval: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_tokens = max_tokens
        self.refill_interval = refill_interval
        self._clock = clock
        self._tokens = max_tokens
        self._last_refill = clock()

    def _refill(self):
        now = self._clock()
        if now - self._last_refill >= self.refill_interval:
            self._tokens = self.max_tokens
            self._last_refill = now

    def try_consume(self) -> bool:
        self._refill()
        if self._tokens > 0:
            self._tokens -= 1
            return True
        return False

    def remaining(self) -> int:
        self._refill()
        return self._tokens

    def time_until_next(self) -> float:
        """Seconds until a token is available."""
        if self.remaining() > 0:
            return 0.0
        elapsed = self._clock() - self._last_refill
        return max(0.0, self.refill_interval - elapsed)


class FailureBreaker:
    """Opens on a systemic failure or a run of consecutive failures."""

    def __init__(self, threshold: int = 5):
        self.threshold = threshold
        self._consecutive = 0
        self.is_open = False

    def record_success(self):
        self._consecutive = 0

    def record_failure(self, error: Exception) -> bool:
        """Record a failure. Returns True if this failure opened the breaker."""
        if self.is_open:
            return False
        self._consecutive += 1
        systemic = isinstance(error, AuthenticationError)
        if systemic or (self.threshold > 0 and self._consecutive >= self.threshold):
            self.is_open = True
            return True
        return False

    def reset(self):
        self._consecutive = 0
        self.is_open = False


class SuggestionScheduler:
    """Queues sessions and scans them sequentially on a background thread."""

    def __init__(
        self,
        gatherer: ContextGatherer,
        client: TagSuggestionClient,
        tag_store: TagStore,
        settings: Optional[TaggerSettings] = None,
        rate_limiter: Optional[HourlyRateLimiter] = None,
    ):
        self.gatherer = gatherer
        self.client = client
        self.tag_store = tag_store
        self.settings = settings or TaggerSettings()

        self._cond = threading.Condition()
        self._queue = ScanQueue()
        self._listeners: dict[str, list[Callable]] = {e: [] for e in EVENTS}
        self._rate_limiter = rate_limiter or HourlyRateLimiter(self.settings.max_sessions_per_hour)
        self._breaker = FailureBreaker(self.settings.breaker_threshold)

        self._worker: Optional[threading.Thread] = None
        self._running = False
        self._paused = False
        self._current_session_id: Optional[str] = None
        self._scanned_count = 0
        self._total_to_scan = 0
        self._last_error: Optional[str] = None

        logger.info(
            f"SuggestionScheduler initialized (max {self.settings.max_sessions_per_hour} "
            f"sessions/hour, rate limit {'on' if self.settings.rate_limit_enabled else 'off'})"
        )

    # Listeners

    def on(self, event: str, callback: Callable) -> Callable:
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(callback)
        return callback

    def off(self, event: str, callback: Callable):
        if callback in self._listeners.get(event, []):
            self._listeners[event].remove(callback)

    def _emit(self, event: str, *args):
        for callback in list(self._listeners[event]):
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Listener for '{event}' failed: {e}")

    # Lifecycle

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    def start(self):
        """Start the worker if it is not already running.

        A worker left over from an earlier stop() is joined first, so at most
        one thread ever calls the model. Called from a listener on the worker
        thread itself, the same thread just keeps going.
        """
        with self._cond:
            if self._running:
                logger.warning("Scheduler already running")
                return
            previous = self._worker

        current = threading.current_thread()
        if previous is not None and previous is not current and previous.is_alive():
            logger.debug("Waiting for previous worker to finish")
            previous.join()

        with self._cond:
            if self._running:
                logger.warning("Scheduler already running")
                return
            self._running = True
            self._paused = False
            if self._worker is not current:
                self._worker = threading.Thread(
                    target=self._run, name="tag-suggestion-worker", daemon=True
                )
                self._worker.start()
            self._cond.notify_all()
        logger.info("Tag suggestion scheduler started")
        self._emit("status_changed", self.get_status())

    def stop(self, timeout: Optional[float] = None):
        """Stop pulling new sessions and wait for the in-flight one to finish.

        Queued sessions stay queued and are picked up by a later start().
        """
        with self._cond:
            if not self._running:
                logger.warning("Scheduler not running")
                return
            self._running = False
            self._paused = False
            self._cond.notify_all()
            worker = self._worker

        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout)
            if worker.is_alive():
                logger.info("Worker still finishing its current session")
        logger.info("Tag suggestion scheduler stopped")
        self._emit("status_changed", self.get_status())

    def pause(self):
        with self._cond:
            if not self._running or self._paused:
                logger.warning("Cannot pause: scheduler not running or already paused")
                return
            self._paused = True
            self._cond.notify_all()
        logger.info("Tag suggestion scheduler paused")
        self._emit("status_changed", self.get_status())

    def resume(self):
        """Resume after pause. Also closes a tripped failure breaker."""
        with self._cond:
            if not self._running or not self._paused:
                logger.warning("Cannot resume: scheduler not running or not paused")
                return
            self._paused = False
            self._breaker.reset()
            self._cond.notify_all()
        logger.info("Tag suggestion scheduler resumed")
        self._emit("status_changed", self.get_status())

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the queue is drained, the worker pauses or stops.

        Returns True if the queue is empty and nothing is in flight.
        """
        with self._cond:
            self._cond.wait_for(
                lambda: self._is_idle() or self._paused or not self._running,
                timeout,
            )
            return self._is_idle()

    def _is_idle(self) -> bool:
        return not self._queue and self._current_session_id is None

    # Queue management

    def queue_session(self, session_id: str, priority: str = "medium") -> bool:
        """Admit a session for scanning. Returns True if the queue changed."""
        if priority not in PRIORITY_RANKS:
            raise ValueError(f"Unknown priority: {priority}")

        with self._cond:
            changed = self._queue.push(session_id, priority)
            size = len(self._queue)
            if changed:
                self._cond.notify_all()

        if not changed:
            logger.debug(f"Session {session_id} already queued")
            return False

        logger.debug(f"Queued session {session_id} with priority {priority}")
        self._emit("queue_changed", size)
        self._emit("progress", self.get_progress())
        return True

    def queue_all_pending(self, limit: Optional[int] = None) -> int:
        """Queue every never-scanned session known to the tag store.

        Sub-agent sessions (ids starting with ``agent-``) get low priority and
        are skipped unless ``scan_agent_sessions`` is enabled.
        """
        try:
            pending = self.tag_store.get_pending_sessions(limit)
        except Exception as e:
            logger.error(f"Failed to load pending sessions: {e}")
            self._emit("error", e, None)
            return 0

        queued = 0
        for session_id in pending:
            is_agent = session_id.startswith("agent-")
            if is_agent and not self.settings.scan_agent_sessions:
                continue
            if self.queue_session(session_id, "low" if is_agent else "medium"):
                queued += 1

        logger.info(f"Queued {queued} of {len(pending)} pending sessions")
        return queued

    def scan_all(self, limit: Optional[int] = None) -> int:
        """Queue all pending sessions and make sure the worker is running."""
        with self._cond:
            self._scanned_count = 0
        queued = self.queue_all_pending(limit)
        with self._cond:
            self._total_to_scan = len(self._queue)
        if not self._running:
            self.start()
        return queued

    def auto_start(self, recent_limit: int = AUTO_START_RECENT_SESSIONS) -> bool:
        """Start and queue the most recent pending sessions if auto-suggest is on."""
        if not self.settings.auto_suggest_enabled:
            logger.debug("Auto-suggest disabled, not starting scheduler")
            return False

        logger.info("Starting tag suggestion scheduler (auto-suggest enabled)")
        if not self._running:
            self.start()
        queued = self.queue_all_pending(recent_limit)
        if queued:
            logger.info(f"Queued {queued} recent sessions for tag scanning")
        return True

    def queued_sessions(self) -> list[str]:
        with self._cond:
            return [item.session_id for item in self._queue.items()]

    # Status

    def get_status(self) -> SchedulerStatus:
        with self._cond:
            queue_size = len(self._queue)
            return SchedulerStatus(
                is_running=self._running,
                is_paused=self._paused,
                total_sessions=self._scanned_count + queue_size,
                scanned_sessions=self._scanned_count,
                pending_sessions=queue_size,
                current_session_id=self._current_session_id,
                estimated_time_remaining=self._estimate_time_ms(queue_size) if queue_size else None,
                last_error=self._last_error,
                breaker_open=self._breaker.is_open,
            )

    def get_progress(self) -> ScanProgress:
        with self._cond:
            queue_size = len(self._queue)
            rate_limited = self.settings.rate_limit_enabled
            current = self._scanned_count
            total = self._total_to_scan if self._total_to_scan > 0 else current + queue_size
            return ScanProgress(
                current=current,
                total=total,
                percentage=round(current / total * 100) if total > 0 else 0,
                estimated_time_ms=self._estimate_time_ms(queue_size),
                current_session_id=self._current_session_id,
                rate_limit_remaining=self._rate_limiter.remaining() if rate_limited else None,
                rate_limit_max=self._rate_limiter.max_tokens if rate_limited else None,
            )

    def _estimate_time_ms(self, queue_size: int) -> int:
        if queue_size == 0:
            return 0
        estimate = queue_size * AVG_SECONDS_PER_REQUEST * 1000
        if self.settings.rate_limit_enabled and self._rate_limiter.remaining() < queue_size:
            estimate += int(self._rate_limiter.time_until_next() * 1000)
        return estimate

    # Worker

    def _next_item(self) -> Optional[QueueItem]:
        """Wait for the next admissible item. Returns None when stopping."""
        with self._cond:
            while True:
                if not self._running or threading.current_thread() is not self._worker:
                    return None
                if self._paused or not self._queue:
                    self._cond.wait()
                    continue
                if self.settings.rate_limit_enabled and not self._rate_limiter.try_consume():
                    wait = min(self._rate_limiter.time_until_next(), RATE_LIMIT_POLL_SECONDS)
                    logger.info(f"Rate limit reached, next session in {wait:.0f}s")
                    self._cond.wait(timeout=max(wait, 0.01))
                    continue
                item = self._queue.pop()
                self._current_session_id = item.session_id
                return item

    def _run(self):
        while True:
            item = self._next_item()
            if item is None:
                break

            self._emit("queue_changed", len(self._queue))
            self._emit("progress", self.get_progress())
            try:
                self._process(item.session_id)
            finally:
                with self._cond:
                    self._current_session_id = None
                    self._cond.notify_all()
                self._emit("progress", self.get_progress())

    def _mark(self, session_id: str, status: str):
        try:
            self.tag_store.update_scan_status(session_id, status)
        except Exception as e:
            logger.error(f"Failed to update scan status for {session_id}: {e}")

    def _process(self, session_id: str):
        logger.info(f"Scanning session {session_id}")
        self._mark(session_id, "scanning")

        try:
            context = self.gatherer.gather_full(session_id)
            if context is None:
                logger.warning(f"Session {session_id} not found or has no context")
                self._mark(session_id, "failed")
                self._emit("complete", session_id, [])
                return

            results = self.client.suggest(render_context(context), self.tag_store.get_tag_names())
            suggestions: list[TagSuggestion] = (
                self.tag_store.save_suggestions(session_id, results) if results else []
            )
        except Exception as e:
            self._handle_failure(session_id, e)
            return

        self._mark(session_id, "completed")
        with self._cond:
            self._scanned_count += 1
            self._breaker.record_success()

        logger.info(f"Generated {len(suggestions)} suggestions for session {session_id}")
        self._emit("complete", session_id, suggestions)

    def _handle_failure(self, session_id: str, error: Exception):
        logger.error(f"Failed to scan session {session_id}: {error}")
        self._mark(session_id, "failed")

        with self._cond:
            self._last_error = str(error)
            tripped = self._breaker.record_failure(error)

        self._emit("complete", session_id, [])

        if not tripped:
            self._emit("error", error, session_id)
            return

        kind = error.error_type if isinstance(error, TagSuggestionError) else type(error).__name__
        logger.error(
            f"Pausing tag suggestions after systemic failure ({kind}); "
            f"{len(self._queue)} sessions left queued"
        )
        self._emit("error", error, None)

        # The worker only pulls the next item after this returns
        with self._cond:
            if self._running:
                self._paused = True
            self._cond.notify_all()
        self._emit("status_changed", self.get_status())
