"""
Reader-side session: in-memory lake collection kept current by a
stale-while-revalidate refresh and by live change notifications.

A session works against any aggregate source offering
get_lakes_with_status(), get_lake_status(lake_id) and
get_last_refresh_time() (the Database itself, or IceApiClient over HTTP),
and a refresh trigger: a callable returning a RefreshOutcome.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple

from .events import ChangeEvent, EventBus, ICE_REPORTS_CHANNEL, USER_REPORTS_CHANNEL, Subscription
from .freshness import is_data_stale
from .models import LakeStatus, utcnow

logger = logging.getLogger(__name__)


@dataclass
class RefreshOutcome:
    success: bool
    message: str


@dataclass
class Notice:
    """Transient, non-blocking message for whoever presents the session."""
    level: str  # loading, success, info, error
    message: str


RefreshTrigger = Callable[[], RefreshOutcome]
NoticeHandler = Callable[[Notice], None]


def log_notice(notice: Notice) -> None:
    level = logging.ERROR if notice.level == "error" else logging.INFO
    logger.log(level, f"[{notice.level}] {notice.message}")


class LakeCollection:
    """
    Thread-safe list of LakeStatus rows.

    Writers swap whole rows by lake id; readers get a snapshot and never
    observe a partially updated row.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._lakes: Tuple[LakeStatus, ...] = ()

    def set_all(self, lakes: List[LakeStatus]) -> None:
        with self._lock:
            self._lakes = tuple(lakes)

    def replace(self, lake: LakeStatus) -> bool:
        """Swap the row with the same id; returns False if no such row."""
        with self._lock:
            if not any(existing.id == lake.id for existing in self._lakes):
                return False
            self._lakes = tuple(lake if existing.id == lake.id else existing for existing in self._lakes)
            return True

    def get(self, lake_id: int) -> Optional[LakeStatus]:
        for lake in self.snapshot():
            if lake.id == lake_id:
                return lake
        return None

    def snapshot(self) -> Tuple[LakeStatus, ...]:
        with self._lock:
            return self._lakes

    def __len__(self) -> int:
        return len(self.snapshot())


class StalenessCoordinator:
    """
    Decide whether the cached aggregate is outdated and refresh it.

    At most one automatic refresh runs per session: the guard is set the
    first time a stale check triggers and stays set until a new
    coordinator is created. Manual refreshes bypass the guard and are not
    deduplicated against automatic ones.
    """

    def __init__(
        self,
        source: Any,
        trigger: RefreshTrigger,
        collection: LakeCollection,
        executor: ThreadPoolExecutor,
        notify: NoticeHandler = log_notice,
        clock: Callable[[], datetime] = utcnow
    ) -> None:
        self._source = source
        self._trigger = trigger
        self._collection = collection
        self._executor = executor
        self._notify = notify
        self._clock = clock
        self._lock = threading.Lock()
        self._auto_refreshed = False
        self._closed = False

    @property
    def auto_refreshed(self) -> bool:
        return self._auto_refreshed

    def is_stale(self) -> bool:
        return is_data_stale(self._source.get_last_refresh_time(), self._clock())

    def check_and_refresh(self) -> Optional[Future]:
        """Start a background refresh if data is stale and none ran yet."""
        if self._auto_refreshed or self._closed:
            return None
        if not self.is_stale():
            return None

        with self._lock:
            if self._auto_refreshed or self._closed:
                return None
            self._auto_refreshed = True

        logger.info("Data is stale, auto-refreshing in background...")
        return self._executor.submit(self._run_refresh)

    def refresh(self) -> Future:
        """Manual refresh, regardless of the automatic guard."""
        return self._executor.submit(self._run_refresh)

    def _emit(self, level: str, message: str) -> None:
        if self._closed:
            return
        try:
            self._notify(Notice(level, message))
        except Exception as e:
            logger.warning(f"Notice handler failed: {e}")

    def _run_refresh(self) -> RefreshOutcome:
        self._emit("loading", "Updating ice conditions...")

        try:
            outcome = self._trigger()
        except Exception as e:
            logger.error(f"Refresh error: {e}")
            outcome = RefreshOutcome(success=False, message=str(e))

        if not outcome.success:
            self._emit("error", f"Could not update ice conditions: {outcome.message}")
            return outcome

        try:
            lakes = self._source.get_lakes_with_status()
        except Exception as e:
            logger.error(f"Re-fetch after refresh failed: {e}")
            self._emit("error", "Could not load updated ice conditions")
            return RefreshOutcome(success=False, message=str(e))

        with self._lock:
            if self._closed:
                logger.debug("Session closed before refresh completed; result dropped")
                return outcome
            self._collection.set_all(lakes)

        self._emit("success", "Ice conditions updated!")
        return outcome

    def close(self) -> None:
        with self._lock:
            self._closed = True


class LiveUpdates:
    """
    Merge change notifications into a LakeCollection.

    Each event re-reads the affected lake's aggregate row and replaces the
    collection entry with the same id. stop() releases both subscriptions.
    """

    def __init__(
        self,
        events: EventBus,
        source: Any,
        collection: LakeCollection,
        notify: NoticeHandler = log_notice
    ) -> None:
        self._events = events
        self._source = source
        self._collection = collection
        self._notify = notify
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []
        self._closed = True

    @property
    def active(self) -> bool:
        return not self._closed

    def start(self) -> "LiveUpdates":
        with self._lock:
            if not self._closed:
                return self
            self._closed = False
            self._subscriptions = [
                self._events.subscribe(ICE_REPORTS_CHANNEL, self._on_ice_report),
                self._events.subscribe(USER_REPORTS_CHANNEL, self._on_user_report),
            ]
        return self

    def stop(self) -> None:
        with self._lock:
            self._closed = True
            subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.unsubscribe()

    def __enter__(self) -> "LiveUpdates":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def _merge(self, event: ChangeEvent) -> Optional[LakeStatus]:
        if self._closed:
            return None
        lake = self._source.get_lake_status(event.lake_id)
        if lake is None:
            return None
        with self._lock:
            if self._closed or not self._collection.replace(lake):
                return None
        return lake

    def _on_ice_report(self, event: ChangeEvent) -> None:
        lake = self._merge(event)
        if lake is not None:
            status = lake.status.value if lake.status else "unknown"
            self._notify(Notice("success", f"{lake.name} status updated! New status: {status}"))

    def _on_user_report(self, event: ChangeEvent) -> None:
        lake = self._merge(event)
        if lake is not None and event.event == "INSERT":
            self._notify(Notice("info", "New community report added!"))


class LakeSession:
    """
    One consumer's view of the lakes.

    start() loads the aggregate, checks staleness once and subscribes to
    live updates when an EventBus is given. close() releases everything;
    refreshes still in flight finish but no longer touch the collection.
    """

    def __init__(
        self,
        source: Any,
        trigger: RefreshTrigger,
        events: Optional[EventBus] = None,
        notify: NoticeHandler = log_notice,
        clock: Callable[[], datetime] = utcnow,
        max_workers: int = 2
    ) -> None:
        self.source = source
        self.collection = LakeCollection()
        self._notify = notify
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="icewatch-refresh")
        self.coordinator = StalenessCoordinator(
            source, trigger, self.collection, self._executor, notify=notify, clock=clock
        )
        self.live = LiveUpdates(events, source, self.collection, notify=notify) if events else None
        self.error: Optional[str] = None

    @property
    def lakes(self) -> Tuple[LakeStatus, ...]:
        return self.collection.snapshot()

    def load(self) -> Optional[Future]:
        """Fetch the aggregate; returns the auto-refresh future if one started."""
        self.error = None
        try:
            self.collection.set_all(self.source.get_lakes_with_status())
        except Exception as e:
            self.error = str(e) or "Failed to fetch lakes"
            logger.error(f"Error fetching lakes: {self.error}")
            self._notify(Notice("error", self.error))
            return None

        try:
            return self.coordinator.check_and_refresh()
        except Exception as e:
            logger.warning(f"Staleness check failed: {e}")
            return None

    def start(self) -> Optional[Future]:
        future = self.load()
        if self.live is not None:
            self.live.start()
        return future

    def refresh(self) -> Future:
        return self.coordinator.refresh()

    def close(self) -> None:
        self.coordinator.close()
        if self.live is not None:
            self.live.stop()
        self._executor.shutdown(wait=False)

    def __enter__(self) -> "LakeSession":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

