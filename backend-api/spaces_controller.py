"""
spacesync Spaces Controller

Backend-agnostic model of desktop spaces and their windows, the capability
interfaces a window manager backend may implement, the capability-erasing
provider wrapper used by the synchronizer, and detection of which backend
daemon is running.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import psutil

from error_handler import ErrorCategory, ErrorSeverity, get_error_handler

logger = logging.getLogger(__name__)


class SpacesError(Exception):
    """Base exception for spaces operations"""
    def __init__(self, message: str, error_code: str, details: Dict = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class BackendCommandError(SpacesError):
    """A window manager CLI call failed or returned unusable output"""
    pass


class ChannelSetupError(SpacesError):
    """The push channel socket could not be created or bound"""
    pass


@dataclass(frozen=True)
class Window:
    """Normalized window. The icon handle does not take part in equality."""
    id: int
    title: str
    app_name: Optional[str] = None
    is_focused: bool = False
    app_icon: Any = field(default=None, compare=False, repr=False)

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization"""
        return {
            'id': self.id,
            'title': self.title,
            'app_name': self.app_name,
            'is_focused': self.is_focused,
        }


@dataclass(frozen=True)
class Space:
    """Normalized space, identified by the backend's own space identifier"""
    id: str
    is_focused: bool = False
    windows: List[Window] = field(default_factory=list)

    def __post_init__(self):
        object.__setattr__(self, 'id', str(self.id))
        object.__setattr__(self, 'windows', list(self.windows))

    def with_focus(self, focused: bool) -> 'Space':
        return replace(self, is_focused=focused)

    def with_windows(self, windows: Iterable[Window]) -> 'Space':
        return replace(self, windows=list(windows))

    def to_space(self) -> 'Space':
        return self

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization"""
        return {
            'id': self.id,
            'is_focused': self.is_focused,
            'windows': [window.to_dict() for window in self.windows],
        }


def space_sort_key(space_id: str):
    """
    Numeric identifiers first in numeric order, then names in string order.

    Identifiers are opaque to the backends; numeric ordering is a deliberate
    choice so that "10" sorts after "2". Characters such as "²" count as
    names, since int() does not accept them.
    """
    text = str(space_id)
    if text.isdecimal():
        try:
            return (0, int(text), text)
        except ValueError:
            pass
    return (1, 0, text)


def sort_spaces(spaces: Iterable[Space]) -> List[Space]:
    return sorted(spaces, key=lambda s: space_sort_key(s.id))


def _reported_focus(data: Dict, *keys: str) -> Optional[bool]:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return bool(value)
    return None


def _require_int(data: Dict, key: str) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise TypeError(f"{key} must be an integer, got {type(value).__name__}")
    return int(value)


# Backend-native models

@dataclass
class YabaiWindow:
    """Window as reported by `yabai -m query --windows`"""
    id: int
    title: str
    app_name: Optional[str]
    space_id: int
    is_focused: bool = False
    stack_index: int = 0
    is_hidden: bool = False
    is_floating: bool = False
    is_sticky: bool = False
    app_icon: Any = None

    @classmethod
    def from_dict(cls, data: Dict, icon_lookup: Callable[[str], Any] = None) -> 'YabaiWindow':
        app_name = data.get('app')
        return cls(
            id=_require_int(data, 'id'),
            title=data.get('title') or '',
            app_name=app_name,
            space_id=_require_int(data, 'space'),
            is_focused=bool(data.get('has-focus', False)),
            stack_index=int(data.get('stack-index', 0) or 0),
            is_hidden=bool(data.get('is-hidden', False)),
            is_floating=bool(data.get('is-floating', False)),
            is_sticky=bool(data.get('is-sticky', False)),
            app_icon=icon_lookup(app_name) if icon_lookup and app_name else None
        )

    @property
    def is_excluded(self) -> bool:
        """Hidden, floating and sticky windows are not listed"""
        return self.is_hidden or self.is_floating or self.is_sticky

    def to_window(self) -> Window:
        return Window(id=self.id, title=self.title, app_name=self.app_name,
                      is_focused=self.is_focused, app_icon=self.app_icon)


@dataclass
class YabaiSpace:
    """Space as reported by `yabai -m query --spaces`, keyed by mission-control index"""
    id: int
    is_focused: bool = False
    windows: List[YabaiWindow] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict) -> 'YabaiSpace':
        key = 'index' if 'index' in data else 'id'
        return cls(id=_require_int(data, key),
                   is_focused=bool(data.get('has-focus', False)))

    def to_space(self) -> Space:
        return Space(id=str(self.id), is_focused=self.is_focused,
                     windows=[w.to_window() for w in self.windows])


@dataclass
class AeroWindow:
    """Window as reported by `aerospace list-windows --json`"""
    id: int
    title: str
    app_name: Optional[str] = None
    workspace: Optional[str] = None
    is_focused: bool = False
    reported_focus: Optional[bool] = None
    app_icon: Any = None

    @classmethod
    def from_dict(cls, data: Dict, icon_lookup: Callable[[str], Any] = None) -> 'AeroWindow':
        title = data['window-title']
        if not isinstance(title, str):
            raise TypeError("window-title must be a string")
        app_name = data.get('app-name')
        workspace = data.get('workspace')
        reported = _reported_focus(data, 'has-focus', 'is-focused')
        return cls(
            id=_require_int(data, 'window-id'),
            title=title,
            app_name=app_name,
            workspace=str(workspace) if workspace is not None else None,
            is_focused=bool(reported),
            reported_focus=reported,
            app_icon=icon_lookup(app_name) if icon_lookup and app_name else None
        )

    def to_window(self) -> Window:
        return Window(id=self.id, title=self.title, app_name=self.app_name,
                      is_focused=self.is_focused, app_icon=self.app_icon)


@dataclass
class AeroSpace:
    """Workspace as reported by `aerospace list-workspaces --json`"""
    workspace: str
    is_focused: bool = False
    windows: List[AeroWindow] = field(default_factory=list)
    reported_focus: Optional[bool] = None

    @property
    def id(self) -> str:
        return self.workspace

    @classmethod
    def from_dict(cls, data: Dict) -> 'AeroSpace':
        workspace = data['workspace']
        if not isinstance(workspace, (str, int)) or isinstance(workspace, bool):
            raise TypeError("workspace must be a string")
        reported = _reported_focus(data, 'has-focus', 'is-focused', 'workspace-is-focused')
        return cls(workspace=str(workspace), is_focused=bool(reported),
                   reported_focus=reported)

    def to_space(self) -> Space:
        return Space(id=self.workspace, is_focused=self.is_focused,
                     windows=[w.to_window() for w in self.windows])


# Events

class SpaceEventType(Enum):
    INITIAL_STATE = "initial_state"
    FOCUS_CHANGED = "focus_changed"
    WINDOWS_UPDATED = "windows_updated"
    SPACE_CREATED = "space_created"
    SPACE_DESTROYED = "space_destroyed"


@dataclass(frozen=True)
class SpaceEvent:
    """Change notification emitted by an event-based provider"""
    type: SpaceEventType
    space_id: Optional[str] = None
    spaces: Optional[List[Space]] = None
    windows: Optional[List[Window]] = None

    @classmethod
    def initial_state(cls, spaces: Iterable[Space]) -> 'SpaceEvent':
        return cls(SpaceEventType.INITIAL_STATE, spaces=list(spaces))

    @classmethod
    def focus_changed(cls, space_id: str) -> 'SpaceEvent':
        return cls(SpaceEventType.FOCUS_CHANGED, space_id=str(space_id))

    @classmethod
    def windows_updated(cls, space_id: str, windows: Iterable[Window]) -> 'SpaceEvent':
        return cls(SpaceEventType.WINDOWS_UPDATED, space_id=str(space_id), windows=list(windows))

    @classmethod
    def space_created(cls, space_id: str) -> 'SpaceEvent':
        return cls(SpaceEventType.SPACE_CREATED, space_id=str(space_id))

    @classmethod
    def space_destroyed(cls, space_id: str) -> 'SpaceEvent':
        return cls(SpaceEventType.SPACE_DESTROYED, space_id=str(space_id))


# Capability interfaces

class SpacesProvider(ABC):
    """Basic query capability. Returned spaces must provide `to_space()`."""

    name = "unknown"

    @abstractmethod
    def get_spaces_with_windows(self) -> Optional[List[Any]]:
        """Full query of spaces with their windows, None on failure"""
        pass


class FocusAwareSpacesProvider(SpacesProvider):
    """Provider that can report the currently focused space and window"""

    @abstractmethod
    def get_focused_space_id(self) -> Optional[str]:
        pass

    @abstractmethod
    def get_focused_window_id(self) -> Optional[int]:
        pass


class SwitchableSpacesProvider(SpacesProvider):
    """Provider that can move focus to a space or a window"""

    @abstractmethod
    def focus_space(self, space_id: str, need_window_focus: bool) -> None:
        pass

    @abstractmethod
    def focus_window(self, window_id: str) -> None:
        pass


class EventBasedSpacesProvider(SpacesProvider):
    """Provider that pushes SpaceEvents to its listeners while observing"""

    def __init__(self):
        self._listeners: List[Callable[[SpaceEvent], None]] = []
        self._listeners_lock = threading.Lock()

    @abstractmethod
    def start_observing(self) -> None:
        pass

    @abstractmethod
    def stop_observing(self) -> None:
        pass

    def add_listener(self, callback: Callable[[SpaceEvent], None]) -> Callable[[], None]:
        """Register an event listener, returns a callable that removes it"""
        with self._listeners_lock:
            self._listeners.append(callback)

        def unsubscribe():
            with self._listeners_lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, event: SpaceEvent):
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Space event listener failed on {event.type.value}: {e}")


class AnySpacesProvider:
    """
    Uniform wrapper over a concrete provider.

    Capabilities are captured once as optional callables; the ones the
    wrapped provider lacks turn into no-ops returning None.
    """

    def __init__(self, provider: SpacesProvider):
        self.provider = provider
        self.name = getattr(provider, 'name', type(provider).__name__)
        self._get_spaces_with_windows = provider.get_spaces_with_windows

        self._focus_space = None
        self._focus_window = None
        if isinstance(provider, SwitchableSpacesProvider):
            self._focus_space = provider.focus_space
            self._focus_window = provider.focus_window

        self._get_focused_space_id = None
        self._get_focused_window_id = None
        if isinstance(provider, FocusAwareSpacesProvider):
            self._get_focused_space_id = provider.get_focused_space_id
            self._get_focused_window_id = provider.get_focused_window_id

        self._start_observing = None
        self._stop_observing = None
        self._add_listener = None
        if isinstance(provider, EventBasedSpacesProvider):
            self._start_observing = provider.start_observing
            self._stop_observing = provider.stop_observing
            self._add_listener = provider.add_listener

    @property
    def is_event_based(self) -> bool:
        return self._start_observing is not None

    @property
    def is_switchable(self) -> bool:
        return self._focus_space is not None

    @property
    def is_focus_aware(self) -> bool:
        return self._get_focused_space_id is not None

    def get_spaces_with_windows(self) -> Optional[List[Space]]:
        """Full query normalized to Space; None when the backend fails"""
        try:
            spaces = self._get_spaces_with_windows()
            if spaces is None:
                return None
            return [space.to_space() for space in spaces]
        except Exception as e:
            get_error_handler().handle_error(
                error=e,
                component=self.name,
                function="get_spaces_with_windows",
                category=ErrorCategory.QUERY_FAILURE,
                severity=ErrorSeverity.MEDIUM
            )
            return None

    def focus_space(self, space_id: str, need_window_focus: bool = False):
        if self._focus_space is None:
            logger.debug(f"{self.name} cannot switch spaces, ignoring focus request for {space_id}")
            return
        self._focus_space(str(space_id), need_window_focus)

    def focus_window(self, window_id):
        if self._focus_window is None:
            logger.debug(f"{self.name} cannot focus windows, ignoring focus request for {window_id}")
            return
        self._focus_window(str(window_id))

    def get_focused_space_id(self) -> Optional[str]:
        if self._get_focused_space_id is None:
            return None
        try:
            return self._get_focused_space_id()
        except Exception as e:
            logger.warning(f"{self.name} focused space lookup failed: {e}")
            return None

    def get_focused_window_id(self) -> Optional[int]:
        if self._get_focused_window_id is None:
            return None
        try:
            return self._get_focused_window_id()
        except Exception as e:
            logger.warning(f"{self.name} focused window lookup failed: {e}")
            return None

    def start_observing(self):
        if self._start_observing is not None:
            self._start_observing()

    def stop_observing(self):
        if self._stop_observing is not None:
            self._stop_observing()

    def add_listener(self, callback: Callable[[SpaceEvent], None]) -> Callable[[], None]:
        if self._add_listener is None:
            return lambda: None
        return self._add_listener(callback)


class SpacesBackendType(Enum):
    YABAI = "yabai"
    AEROSPACE = "aerospace"
    NONE = "none"


# Daemon process names in detection order; the first one running wins
KNOWN_BACKEND_PROCESSES = [
    ("yabai", SpacesBackendType.YABAI),
    ("aerospace", SpacesBackendType.AEROSPACE),
]


class SpacesBackendDetector:
    """Detects which supported window manager daemon is running"""

    def get_running_process_names(self) -> Set[str]:
        """Lowercased names of all running processes"""
        names = set()
        try:
            for proc in psutil.process_iter(['name']):
                try:
                    name = proc.info.get('name')
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    continue
                if name:
                    names.add(name.lower())
        except psutil.Error as e:
            logger.warning(f"Process enumeration failed: {e}")
        return names

    def detect_backend(self, process_names: Iterable[str] = None) -> SpacesBackendType:
        """
        Pick the backend for the first known daemon found running.

        Args:
            process_names: Process names to check, enumerated with psutil if None

        Returns:
            SpacesBackendType, NONE when no known daemon runs
        """
        if process_names is None:
            names = self.get_running_process_names()
        else:
            names = {name.lower() for name in process_names}

        for process_name, backend_type in KNOWN_BACKEND_PROCESSES:
            if process_name in names:
                logger.info(f"Spaces backend detected: {backend_type.value}")
                return backend_type

        get_error_handler().handle_error(
            error=SpacesError("No supported window manager daemon is running", "BACKEND_ABSENT",
                              {"known": [name for name, _ in KNOWN_BACKEND_PROCESSES]}),
            component="detector",
            function="detect_backend",
            category=ErrorCategory.BACKEND_ABSENT,
            severity=ErrorSeverity.LOW
        )
        return SpacesBackendType.NONE
