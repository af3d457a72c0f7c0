import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import sessionmaker

from aggregation import QuickStats
from config import get_settings
from database import session_scope
from services import DashboardService, get_current_user_id

logger = logging.getLogger(__name__)

Subscriber = Callable[[QuickStats], None]

POLL_JOB_ID = "ledger_poll"
DEBOUNCE_JOB_ID = "ledger_refresh_debounced"


class LedgerSession:
    """Owns the summary-stats view of one account.

    Observers subscribe to fresh ``QuickStats``. A refresh happens on the
    periodic poll, on ``refresh_now()``, and shortly after
    ``notify_changed()``; notifications arriving inside the debounce window
    collapse into a single re-read, and reads inside the cache TTL are
    served from memory.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        user_id: Optional[int] = None,
        *,
        poll_interval_secs: Optional[float] = None,
        debounce_ms: Optional[int] = None,
        cache_ttl_ms: Optional[int] = None,
        scheduler: Optional[BackgroundScheduler] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self.session_factory = session_factory
        self.user_id = user_id or get_current_user_id()
        self.poll_interval_secs = (
            poll_interval_secs
            if poll_interval_secs is not None
            else settings.refresh_interval_secs
        )
        self.debounce_ms = (
            debounce_ms if debounce_ms is not None else settings.refresh_debounce_ms
        )
        self.cache_ttl_ms = (
            cache_ttl_ms if cache_ttl_ms is not None else settings.stats_cache_ttl_ms
        )
        self.scheduler = scheduler or BackgroundScheduler(timezone=settings.timezone)
        self._clock = clock
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._cache: Optional[tuple[float, QuickStats]] = None

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def stats(self, force: bool = False) -> QuickStats:
        with self._lock:
            cached = self._cache
        if not force and cached is not None:
            age_ms = (self._clock() - cached[0]) * 1000
            if age_ms < self.cache_ttl_ms:
                return cached[1]

        with session_scope(self.session_factory) as session:
            stats = DashboardService(session, self.user_id).quick_stats()
        with self._lock:
            self._cache = (self._clock(), stats)
        return stats

    def refresh_now(self) -> QuickStats:
        stats = self.stats(force=True)
        self._publish(stats)
        return stats

    def notify_changed(self) -> None:
        """Signal that the ledger changed. Never raises, never blocks on I/O."""
        with self._lock:
            self._cache = None
            if not self.scheduler.running:
                return
            # one refresh per window; a one-shot job leaves the store once it
            # has run or been missed, which reopens the window
            if self.scheduler.get_job(DEBOUNCE_JOB_ID) is not None:
                return
            run_at = datetime.now(timezone.utc) + timedelta(milliseconds=self.debounce_ms)
            try:
                self.scheduler.add_job(
                    self._flush_refresh,
                    DateTrigger(run_date=run_at),
                    id=DEBOUNCE_JOB_ID,
                    replace_existing=True,
                    misfire_grace_time=5,
                )
            except Exception:
                logger.exception("ledger_refresh_schedule_failed")

    def start(self) -> None:
        self.scheduler.add_job(
            self._poll,
            IntervalTrigger(seconds=self.poll_interval_secs),
            id=POLL_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(
            f"ledger_session_started: user_id={self.user_id} "
            f"poll={self.poll_interval_secs}s debounce={self.debounce_ms}ms "
            f"ttl={self.cache_ttl_ms}ms"
        )
        self._poll()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("ledger_session_stopped")

    def _poll(self) -> None:
        try:
            self._publish(self.stats())
        except Exception:
            logger.exception("ledger_poll_failed")

    def _flush_refresh(self) -> None:
        try:
            self.refresh_now()
        except Exception:
            logger.exception("ledger_refresh_failed")

    def _publish(self, stats: QuickStats) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(stats)
            except Exception:
                logger.exception("ledger_subscriber_failed")
