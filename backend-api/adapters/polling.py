"""
Polling Driver

Runs a refresh callback for backends without a push channel: once at start,
then on a fixed interval and whenever a subscribed notification source fires.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class NotificationSource(ABC):
    """Something that can signal that spaces may have changed"""

    @abstractmethod
    def subscribe(self, callback: Callable[[], None]) -> Any:
        """Register callback, returns a handle for unsubscribe"""
        pass

    @abstractmethod
    def unsubscribe(self, handle: Any) -> None:
        pass


class CallbackNotificationSource(NotificationSource):
    """Notification source fired explicitly, e.g. from an OS workspace hook"""

    def __init__(self, name: str = "callback"):
        self.name = name
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._next_handle = 0
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[], None]) -> int:
        with self._lock:
            handle = self._next_handle
            self._next_handle += 1
            self._callbacks[handle] = callback
        return handle

    def unsubscribe(self, handle: int) -> None:
        with self._lock:
            self._callbacks.pop(handle, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def fire(self):
        """Notify all subscribers"""
        with self._lock:
            callbacks = list(self._callbacks.values())
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Notification callback for {self.name} failed: {e}")


class PollingMonitor:
    """Interval and notification driven refresh loop"""

    def __init__(self, refresh: Callable[[], None], interval: float = 1.0,
                 sources: Iterable[NotificationSource] = None):
        """
        Args:
            refresh: Called on the monitor thread for every refresh
            interval: Seconds between refreshes, 0 or None for notifications only
            sources: Notification sources that trigger an immediate refresh
        """
        self.refresh = refresh
        self.interval = interval or None
        self.sources = list(sources or [])
        self.running = False
        self.refresh_count = 0
        self._wakeup = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._subscriptions: List[Tuple[NotificationSource, Any]] = []

    def start(self):
        """Subscribe to the sources and start the refresh thread"""
        with self._lock:
            if self.running:
                return
            self.running = True
            self._subscriptions = [(source, source.subscribe(self.trigger))
                                   for source in self.sources]
            self._thread = threading.Thread(target=self._poll_loop, name="spaces-poller",
                                            daemon=True)
            self._thread.start()
        logger.info(f"Polling started (interval: {self.interval}s, sources: {len(self.sources)})")

    def stop(self):
        """Release the subscriptions and stop the refresh thread"""
        with self._lock:
            if not self.running:
                return
            self.running = False
            subscriptions = self._subscriptions
            self._subscriptions = []
            thread = self._thread
            self._thread = None

        for source, handle in subscriptions:
            source.unsubscribe(handle)

        self._wakeup.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)
        logger.info("Polling stopped")

    def trigger(self):
        """Request a refresh as soon as possible; bursts coalesce"""
        self._wakeup.set()

    def _poll_loop(self):
        while self.running:
            try:
                self.refresh()
            except Exception as e:
                logger.error(f"Spaces refresh failed: {e}")
            self.refresh_count += 1

            # A trigger that lands during refresh keeps the event set
            self._wakeup.wait(self.interval)
            self._wakeup.clear()
