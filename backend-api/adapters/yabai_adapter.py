"""
yabai Adapter

Provides integration with the yabai tiling window manager. Current state is
queried through the yabai CLI; live changes arrive as short text messages on
a local datagram socket that yabai signals write to, e.g.

    yabai -m signal --add event=space_changed \\
        action='echo "space_changed:$YABAI_SPACE_INDEX" | nc -U -u -w0 /tmp/spacesync-yabai.sock'
"""

import os
import json
import socket
import logging
import threading
import subprocess
from typing import Any, Callable, List, Optional, Tuple

from spaces_config import SpacesConfig, get_config
from spaces_controller import (
    BackendCommandError, ChannelSetupError, EventBasedSpacesProvider,
    FocusAwareSpacesProvider, Space, SpaceEvent, SwitchableSpacesProvider,
    Window, YabaiSpace, YabaiWindow
)
from error_handler import (
    ErrorCategory, ErrorSeverity, error_handler_decorator, get_error_handler
)

logger = logging.getLogger(__name__)

WINDOW_EVENTS = frozenset([
    "window_focused", "window_created", "window_destroyed", "window_moved"
])


def parse_socket_message(message: str) -> Tuple[str, Optional[str]]:
    """
    Split a socket message into event type and payload.

    Messages are either `event_type` or `event_type:payload`; an empty
    payload counts as absent.
    """
    parts = message.strip().split(':', 1)
    event_type = parts[0].strip()
    payload = parts[1].strip() if len(parts) > 1 else None
    return event_type, payload or None


class YabaiSpacesProvider(FocusAwareSpacesProvider, SwitchableSpacesProvider,
                          EventBasedSpacesProvider):
    """Adapter for the yabai window manager"""

    name = "yabai"

    RECV_BUFFER_SIZE = 1024
    RECV_TIMEOUT = 0.5  # seconds between checks of the observing flag

    def __init__(self, executable_path: str = None, socket_path: str = None,
                 command_timeout: float = None, window_focus_delay: float = None,
                 icon_lookup: Callable[[str], Any] = None,
                 config: SpacesConfig = None):
        super().__init__()
        config = config or get_config()
        self.executable_path = executable_path or config.yabai_path
        self.socket_path = socket_path or config.yabai_socket_path
        self.command_timeout = command_timeout if command_timeout is not None else config.command_timeout
        self.window_focus_delay = (window_focus_delay if window_focus_delay is not None
                                   else config.window_focus_delay)
        self.icon_lookup = icon_lookup
        self.channel_error: Optional[ChannelSetupError] = None

        self._observing = False
        self._state_lock = threading.Lock()
        self._socket: Optional[socket.socket] = None
        self._listener_thread: Optional[threading.Thread] = None

        logger.info(f"yabai adapter initialized with executable: {self.executable_path}")

    # CLI

    def _run_yabai(self, arguments: List[str]) -> str:
        """
        Execute a yabai command.

        Args:
            arguments: Arguments passed after the executable

        Returns:
            Standard output of the command

        Raises:
            BackendCommandError: the command could not run or exited non-zero
        """
        command = [self.executable_path] + arguments
        try:
            result = subprocess.run(command, capture_output=True, text=True,
                                    timeout=self.command_timeout)
        except subprocess.TimeoutExpired:
            raise BackendCommandError(f"yabai command timed out: {' '.join(arguments)}",
                                      "COMMAND_TIMEOUT", {"arguments": arguments})
        except OSError as e:
            raise BackendCommandError(f"yabai could not be executed: {e}",
                                      "COMMAND_NOT_RUNNABLE",
                                      {"executable": self.executable_path})

        if result.returncode != 0:
            raise BackendCommandError(
                f"yabai command failed: {(result.stderr or '').strip()}",
                "COMMAND_FAILED",
                {"arguments": arguments, "returncode": result.returncode}
            )
        return result.stdout

    def _query_json(self, arguments: List[str]) -> Any:
        output = self._run_yabai(arguments)
        if not output or not output.strip():
            raise BackendCommandError("yabai returned no output", "EMPTY_OUTPUT",
                                      {"arguments": arguments})
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise BackendCommandError(f"Failed to parse yabai JSON output: {e}",
                                      "INVALID_JSON", {"arguments": arguments})

    def _query_list(self, arguments: List[str]) -> List[dict]:
        data = self._query_json(arguments)
        if not isinstance(data, list):
            raise BackendCommandError("yabai returned an unexpected payload",
                                      "INVALID_PAYLOAD", {"arguments": arguments})
        if not all(isinstance(item, dict) for item in data):
            raise BackendCommandError("yabai returned a list with non-object entries",
                                      "INVALID_PAYLOAD", {"arguments": arguments})
        return data

    def _record_failure(self, function: str, error: Exception,
                        category: ErrorCategory = ErrorCategory.QUERY_FAILURE):
        get_error_handler().handle_error(
            error=error,
            component=self.name,
            function=function,
            category=category,
            severity=ErrorSeverity.MEDIUM
        )

    def _fetch_spaces(self) -> List[YabaiSpace]:
        return [YabaiSpace.from_dict(d) for d in self._query_list(["-m", "query", "--spaces"])]

    def _fetch_windows(self, space_id: str = None) -> List[YabaiWindow]:
        arguments = ["-m", "query", "--windows"]
        if space_id is not None:
            arguments.extend(["--space", str(space_id)])
        return [YabaiWindow.from_dict(d, self.icon_lookup) for d in self._query_list(arguments)]

    @staticmethod
    def _listed_windows(windows: List[YabaiWindow]) -> List[YabaiWindow]:
        """Drop hidden, floating and sticky windows and order by stack index"""
        return sorted((w for w in windows if not w.is_excluded), key=lambda w: w.stack_index)

    # Queries

    def get_spaces_with_windows(self) -> Optional[List[YabaiSpace]]:
        """Spaces that hold at least one listed window, None on failure"""
        try:
            spaces = self._fetch_spaces()
            windows = self._fetch_windows()
        except (BackendCommandError, KeyError, TypeError, ValueError) as e:
            self._record_failure("get_spaces_with_windows", e)
            return None

        spaces_by_id = {space.id: space for space in spaces}
        for window in self._listed_windows(windows):
            space = spaces_by_id.get(window.space_id)
            if space is not None:
                space.windows.append(window)

        result = [space for space in spaces if space.windows]
        logger.debug(f"Retrieved {len(result)} spaces with windows from yabai")
        return result

    def get_space_windows(self, space_id: str) -> Optional[List[Window]]:
        """Listed windows of a single space, None on failure"""
        try:
            windows = self._fetch_windows(space_id)
        except (BackendCommandError, KeyError, TypeError, ValueError) as e:
            self._record_failure("get_space_windows", e)
            return None
        return [w.to_window() for w in self._listed_windows(windows)]

    def get_focused_space_id(self) -> Optional[str]:
        try:
            data = self._query_json(["-m", "query", "--spaces", "--space"])
            return str(YabaiSpace.from_dict(data).id)
        except (BackendCommandError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.debug(f"Focused yabai space unavailable: {e}")
            return None

    def get_focused_window_id(self) -> Optional[int]:
        try:
            data = self._query_json(["-m", "query", "--windows", "--window"])
            return int(data['id'])
        except (BackendCommandError, KeyError, TypeError, ValueError) as e:
            logger.debug(f"Focused yabai window unavailable: {e}")
            return None

    # Focus control

    def focus_space(self, space_id: str, need_window_focus: bool = False):
        """
        Switch to a space.

        With need_window_focus, once yabai has settled the space is
        re-queried and its first window focused if none holds focus.
        """
        try:
            self._run_yabai(["-m", "space", "--focus", str(space_id)])
        except BackendCommandError as e:
            # yabai exits non-zero when the space is already focused
            self._record_failure("focus_space", e, ErrorCategory.COMMAND_FAILURE)

        if not need_window_focus:
            return

        timer = threading.Timer(self.window_focus_delay, self._ensure_window_focus,
                                args=(str(space_id),))
        timer.daemon = True
        timer.start()

    @error_handler_decorator("yabai", ErrorCategory.COMMAND_FAILURE, reraise=False)
    def _ensure_window_focus(self, space_id: str):
        windows = self.get_space_windows(space_id)
        if not windows or any(w.is_focused for w in windows):
            return
        self._run_yabai(["-m", "window", "--focus", str(windows[0].id)])
        logger.info(f"Focused window {windows[0].id} on space {space_id}")

    @error_handler_decorator("yabai", ErrorCategory.COMMAND_FAILURE, reraise=False)
    def focus_window(self, window_id: str):
        self._run_yabai(["-m", "window", "--focus", str(window_id)])
        logger.info(f"Focused window {window_id}")

    # Event channel

    @property
    def is_observing(self) -> bool:
        return self._observing

    def start_observing(self):
        """Emit the current state, then listen for socket messages on a worker thread"""
        with self._state_lock:
            if self._observing:
                return
            self._observing = True
            self.channel_error = None

        self._emit(SpaceEvent.initial_state(self._current_spaces()))

        thread = threading.Thread(target=self._socket_listener_loop,
                                  name="yabai-socket-listener", daemon=True)
        with self._state_lock:
            self._listener_thread = thread
        thread.start()

    def stop_observing(self):
        """Stop listening, close the socket and remove the socket file"""
        with self._state_lock:
            was_observing = self._observing
            self._observing = False
            thread = self._listener_thread
            self._listener_thread = None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.RECV_TIMEOUT * 4)

        with self._state_lock:
            sock = self._socket
            self._socket = None
        if sock is not None:
            sock.close()

        if was_observing:
            self._remove_socket_file()
            logger.info("Stopped observing yabai events")

    def _remove_socket_file(self):
        try:
            os.unlink(self.socket_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove socket file {self.socket_path}: {e}")

    def _open_socket(self) -> socket.socket:
        """Recreate and bind the datagram socket"""
        try:
            os.unlink(self.socket_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ChannelSetupError(f"Could not remove stale socket {self.socket_path}: {e}",
                                    "SOCKET_UNLINK_FAILED", {"path": self.socket_path})

        try:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        except (OSError, AttributeError) as e:
            raise ChannelSetupError(f"Failed to create socket: {e}",
                                    "SOCKET_CREATE_FAILED", {"path": self.socket_path})

        try:
            sock.bind(self.socket_path)
        except OSError as e:
            sock.close()
            raise ChannelSetupError(f"Failed to bind socket {self.socket_path}: {e}",
                                    "SOCKET_BIND_FAILED", {"path": self.socket_path})

        sock.settimeout(self.RECV_TIMEOUT)
        return sock

    def _socket_listener_loop(self):
        try:
            sock = self._open_socket()
        except ChannelSetupError as e:
            # No retry: observation continues without live updates
            get_error_handler().handle_error(
                error=e,
                component=self.name,
                function="start_observing",
                category=ErrorCategory.CHANNEL_SETUP_FAILURE,
                severity=ErrorSeverity.HIGH
            )
            self.channel_error = e
            return

        with self._state_lock:
            if not self._observing:
                sock.close()
                self._remove_socket_file()
                return
            self._socket = sock

        logger.info(f"Listening for yabai events on {self.socket_path}")
        try:
            while self._observing:
                try:
                    data = sock.recv(self.RECV_BUFFER_SIZE)
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._observing:
                        logger.error(f"yabai socket receive failed: {e}")
                    break

                for line in data.decode('utf-8', errors='replace').splitlines():
                    if line.strip():
                        self._dispatch_message(line)
        finally:
            with self._state_lock:
                if self._socket is sock:
                    self._socket = None
            sock.close()
            logger.info("yabai socket listener stopped")

    def _dispatch_message(self, message: str):
        try:
            self.handle_socket_message(message)
        except Exception as e:
            logger.error(f"Failed to handle yabai message {message!r}: {e}")

    def handle_socket_message(self, message: str):
        """Translate one socket message into a SpaceEvent"""
        event_type, payload = parse_socket_message(message)
        logger.debug(f"yabai event: {event_type} payload={payload}")

        if event_type == "space_changed":
            if payload:
                self._emit(SpaceEvent.focus_changed(payload))
            else:
                self._refresh_spaces()

        elif event_type in WINDOW_EVENTS:
            if payload:
                windows = self.get_space_windows(payload)
                if windows is None:
                    self._refresh_spaces()
                else:
                    self._emit(SpaceEvent.windows_updated(payload, windows))
            else:
                self._refresh_spaces()

        elif event_type == "space_created":
            if payload:
                self._emit(SpaceEvent.space_created(payload))
            else:
                self._refresh_spaces()

        elif event_type == "space_destroyed":
            if payload:
                self._emit(SpaceEvent.space_destroyed(payload))
            else:
                self._refresh_spaces()

        else:
            self._refresh_spaces()

    def _current_spaces(self) -> List[Space]:
        spaces = self.get_spaces_with_windows()
        if spaces is None:
            return []
        return [space.to_space() for space in spaces]

    def _refresh_spaces(self):
        self._emit(SpaceEvent.initial_state(self._current_spaces()))
