"""
spacesync Synchronizer

Keeps a live, sorted view of the desktop spaces reported by the running
window manager backend. Event-based backends push incremental changes;
other backends are polled. All changes to the canonical state go through a
single state worker, CLI calls run on separate workers, and focus requests
are fire-and-forget.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from spaces_config import SpacesConfig, get_config
from spaces_controller import (
    AnySpacesProvider, Space, SpaceEvent, SpaceEventType, SpacesBackendDetector,
    SpacesBackendType, SpacesProvider, Window, sort_spaces
)
from error_handler import ErrorCategory, ErrorContext, ErrorSeverity
from adapters.polling import NotificationSource, PollingMonitor
from adapters.yabai_adapter import YabaiSpacesProvider
from adapters.aerospace_adapter import AerospaceSpacesProvider

logger = logging.getLogger(__name__)


class MonitoringState(Enum):
    IDLE = "idle"
    MONITORING = "monitoring"


def create_provider(backend_type: SpacesBackendType, config: SpacesConfig = None,
                    icon_lookup: Callable[[str], Any] = None) -> Optional[AnySpacesProvider]:
    """Build the wrapped provider for a detected backend, None for no backend"""
    config = config or get_config()
    if backend_type == SpacesBackendType.YABAI:
        return AnySpacesProvider(YabaiSpacesProvider(config=config, icon_lookup=icon_lookup))
    if backend_type == SpacesBackendType.AEROSPACE:
        return AnySpacesProvider(AerospaceSpacesProvider(config=config, icon_lookup=icon_lookup))
    return None


class SpacesSynchronizer:
    """Owns the canonical spaces state and publishes sorted snapshots of it"""

    def __init__(self, provider: Union[AnySpacesProvider, SpacesProvider] = None,
                 config: SpacesConfig = None,
                 detector: SpacesBackendDetector = None,
                 notification_sources: Iterable[NotificationSource] = None,
                 icon_lookup: Callable[[str], Any] = None):
        """
        Args:
            provider: Backend to use; detected from running processes if None
            config: Settings, global configuration if None
            detector: Backend detector used when no provider is given
            notification_sources: Extra refresh triggers for polled backends
            icon_lookup: Maps an application name to an icon handle
        """
        self.config = config or get_config()
        self.notification_sources = list(notification_sources or [])

        if provider is None:
            detector = detector or SpacesBackendDetector()
            self.backend_type = detector.detect_backend()
            provider = create_provider(self.backend_type, self.config, icon_lookup)
        else:
            self.backend_type = None
        if provider is not None and not isinstance(provider, AnySpacesProvider):
            provider = AnySpacesProvider(provider)
        self.provider: Optional[AnySpacesProvider] = provider

        self.state = MonitoringState.IDLE
        self.publish_count = 0

        self._spaces_by_id: Dict[str, Space] = {}
        self._published: List[Space] = []
        self._subscribers: List[Callable[[List[Space]], None]] = []
        self._subscribers_lock = threading.Lock()

        self._lifecycle_lock = threading.Lock()
        self._generation = 0
        self._closed = False
        self._unsubscribe_events: Optional[Callable[[], None]] = None
        self._poller: Optional[PollingMonitor] = None

        self._state_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="spaces-state")
        self._query_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="spaces-query")
        self._command_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="spaces-command")

        if self.provider:
            logger.info(f"Spaces synchronizer initialized for {self.provider.name}")
        else:
            logger.warning("No spaces backend available, spaces will stay empty")

    def __enter__(self):
        self.start_monitoring()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def is_monitoring(self) -> bool:
        return self.state == MonitoringState.MONITORING

    # Lifecycle

    def start_monitoring(self):
        """Start following the backend by events or by polling"""
        with self._lifecycle_lock:
            if self._closed:
                logger.warning("Cannot start monitoring on a closed synchronizer")
                return
            if self.provider is None or self.state == MonitoringState.MONITORING:
                return

            self._generation += 1
            generation = self._generation
            self.state = MonitoringState.MONITORING

            if self.provider.is_event_based:
                self._unsubscribe_events = self.provider.add_listener(
                    lambda event: self._submit_state(generation, self._apply_event, event)
                )
                self._query_executor.submit(self._start_observing, generation)
            else:
                self._poller = PollingMonitor(
                    refresh=lambda: self._poll_refresh(generation),
                    interval=self.config.poll_interval,
                    sources=self.notification_sources
                )
                self._poller.start()

        mode = "events" if self.provider.is_event_based else "polling"
        logger.info(f"Spaces monitoring started for {self.provider.name} ({mode})")

    def stop_monitoring(self):
        """Stop whichever strategy is active; safe to call repeatedly"""
        with self._lifecycle_lock:
            if self.state != MonitoringState.MONITORING:
                return
            self._generation += 1
            self.state = MonitoringState.IDLE
            unsubscribe = self._unsubscribe_events
            poller = self._poller
            self._unsubscribe_events = None
            self._poller = None

        if unsubscribe is not None:
            unsubscribe()
        if poller is not None:
            poller.stop()
        if self.provider.is_event_based:
            self.provider.stop_observing()

        logger.info(f"Spaces monitoring stopped for {self.provider.name}")

    def close(self):
        """Stop monitoring, release the workers and discard all state"""
        self.stop_monitoring()
        with self._lifecycle_lock:
            if self._closed:
                return
            self._closed = True

        # In-flight CLI calls finish on their own; their results are discarded
        self._command_executor.shutdown(wait=False)
        self._query_executor.shutdown(wait=False)
        self._state_executor.shutdown(wait=True)

        self._spaces_by_id = {}
        self._published = []
        with self._subscribers_lock:
            self._subscribers.clear()
        logger.info("Spaces synchronizer closed")

    def _start_observing(self, generation: int):
        if generation != self._generation:
            return
        with ErrorContext("synchronizer", "start_observing", ErrorCategory.UNKNOWN,
                          ErrorSeverity.HIGH, reraise=False):
            self.provider.start_observing()
        # stop_monitoring may have run while the initial query was in flight
        if generation != self._generation:
            self.provider.stop_observing()

    def _poll_refresh(self, generation: int):
        spaces = self.provider.get_spaces_with_windows()
        self._submit_state(generation, self._apply_snapshot, spaces)

    def _submit_state(self, generation: int, apply: Callable[[Any], None], payload: Any):
        try:
            self._state_executor.submit(self._apply_if_current, generation, apply, payload)
        except RuntimeError:
            logger.debug("State worker is shut down, dropping update")

    def _apply_if_current(self, generation: int, apply: Callable[[Any], None], payload: Any):
        if generation != self._generation or self.state != MonitoringState.MONITORING:
            logger.debug("Discarding update that arrived after monitoring stopped")
            return
        with ErrorContext("synchronizer", apply.__name__.lstrip("_"), ErrorCategory.UNKNOWN,
                          ErrorSeverity.HIGH, reraise=False):
            apply(payload)

    # State

    def _apply_event(self, event: SpaceEvent):
        """Apply one pushed event to the canonical state, then republish"""
        if event.type == SpaceEventType.INITIAL_STATE:
            self._spaces_by_id = {space.id: space for space in event.spaces or []}

        elif event.type == SpaceEventType.FOCUS_CHANGED:
            for space_id, space in list(self._spaces_by_id.items()):
                focused = space_id == event.space_id
                if space.is_focused != focused:
                    self._spaces_by_id[space_id] = space.with_focus(focused)

        elif event.type == SpaceEventType.WINDOWS_UPDATED:
            space = self._spaces_by_id.get(event.space_id)
            if space is not None:
                self._spaces_by_id[event.space_id] = space.with_windows(event.windows or [])

        elif event.type == SpaceEventType.SPACE_CREATED:
            if event.space_id not in self._spaces_by_id:
                self._spaces_by_id[event.space_id] = Space(id=event.space_id)

        elif event.type == SpaceEventType.SPACE_DESTROYED:
            self._spaces_by_id.pop(event.space_id, None)

        self._republish()

    def _apply_snapshot(self, spaces: Optional[List[Space]]):
        """Replace the canonical state with a polled snapshot, empty on failure"""
        if spaces is None:
            logger.debug("Spaces query returned no data, clearing state")
            self._spaces_by_id = {}
        else:
            self._spaces_by_id = {space.id: space for space in spaces}
        self._republish()

    def _republish(self):
        sorted_spaces = sort_spaces(self._spaces_by_id.values())
        if sorted_spaces == self._published:
            return
        self._published = sorted_spaces
        self.publish_count += 1

        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(list(sorted_spaces))
            except Exception as e:
                logger.error(f"Spaces subscriber failed: {e}")

    # Consumer interface

    def current_spaces(self) -> List[Space]:
        """Last published snapshot, sorted by space identifier"""
        return list(self._published)

    def subscribe(self, callback: Callable[[List[Space]], None]) -> Callable[[], None]:
        """Call callback with every newly published snapshot; returns an unsubscribe callable"""
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def switch_to_space(self, space: Space, need_window_focus: bool = False):
        self.request_focus_space(space.id, need_window_focus)

    def switch_to_window(self, window: Window):
        self.request_focus_window(window.id)

    def request_focus_space(self, space_id: str, need_window_focus: bool = False):
        """Ask the backend to focus a space without waiting for it"""
        if self.provider is None:
            return
        self._submit_command("focus_space", self.provider.focus_space,
                             str(space_id), need_window_focus)

    def request_focus_window(self, window_id: Union[int, str]):
        """Ask the backend to focus a window without waiting for it"""
        if self.provider is None:
            return
        self._submit_command("focus_window", self.provider.focus_window, window_id)

    def _submit_command(self, name: str, command: Callable, *args):
        try:
            self._command_executor.submit(self._run_command, name, command, args)
        except RuntimeError:
            logger.warning(f"Dropping {name} request, synchronizer is closed")

    def _run_command(self, name: str, command: Callable, args: tuple):
        with ErrorContext("synchronizer", name, ErrorCategory.COMMAND_FAILURE,
                          ErrorSeverity.MEDIUM, reraise=False,
                          additional_details={"arguments": [str(a) for a in args]}):
            command(*args)

    def get_focused_ids(self) -> Dict[str, Any]:
        """Best-effort focused space and window; runs backend queries on the caller's thread"""
        if self.provider is None:
            return {"space_id": None, "window_id": None}
        return {
            "space_id": self.provider.get_focused_space_id(),
            "window_id": self.provider.get_focused_window_id(),
        }

    def flush(self, timeout: float = 5.0) -> bool:
        """
        Wait until queued queries and the state updates they produced are applied.

        Returns:
            False if the workers did not drain within timeout
        """
        for executor in (self._query_executor, self._state_executor):
            try:
                executor.submit(lambda: None).result(timeout=timeout)
            except RuntimeError:
                continue
            except FutureTimeoutError:
                return False
        return True

    def get_status(self) -> Dict[str, Any]:
        """Diagnostics for the consumer surface"""
        status = {
            "backend": self.provider.name if self.provider else None,
            "event_based": bool(self.provider and self.provider.is_event_based),
            "state": self.state.value,
            "space_count": len(self._published),
            "publish_count": self.publish_count,
            "channel_error": None,
        }
        channel_error = getattr(self.provider.provider, 'channel_error', None) if self.provider else None
        if channel_error is not None:
            status["channel_error"] = {"message": channel_error.message,
                                       "code": channel_error.error_code}
        return status
