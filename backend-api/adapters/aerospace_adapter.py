"""
AeroSpace Adapter

Provides integration with the AeroSpace window manager through its CLI.
AeroSpace has no push channel, so the synchronizer polls this adapter.
"""

import json
import logging
import threading
import subprocess
from typing import Any, Callable, List, Optional

from spaces_config import SpacesConfig, get_config
from spaces_controller import (
    AeroSpace, AeroWindow, BackendCommandError, FocusAwareSpacesProvider,
    SwitchableSpacesProvider
)
from error_handler import (
    ErrorCategory, ErrorSeverity, error_handler_decorator, get_error_handler
)

logger = logging.getLogger(__name__)

WINDOW_FORMAT = "%{window-id} %{app-name} %{window-title} %{workspace}"


class AerospaceSpacesProvider(FocusAwareSpacesProvider, SwitchableSpacesProvider):
    """Adapter for the AeroSpace window manager"""

    name = "aerospace"

    def __init__(self, executable_path: str = None, command_timeout: float = None,
                 window_focus_delay: float = None,
                 icon_lookup: Callable[[str], Any] = None,
                 config: SpacesConfig = None):
        config = config or get_config()
        self.executable_path = executable_path or config.aerospace_path
        self.command_timeout = command_timeout if command_timeout is not None else config.command_timeout
        self.window_focus_delay = (window_focus_delay if window_focus_delay is not None
                                   else config.window_focus_delay)
        self.icon_lookup = icon_lookup
        logger.info(f"AeroSpace adapter initialized with executable: {self.executable_path}")

    def _run_aerospace(self, arguments: List[str]) -> str:
        """
        Execute an aerospace command.

        Raises:
            BackendCommandError: the command could not run or exited non-zero
        """
        command = [self.executable_path] + arguments
        try:
            result = subprocess.run(command, capture_output=True, text=True,
                                    timeout=self.command_timeout)
        except subprocess.TimeoutExpired:
            raise BackendCommandError(f"aerospace command timed out: {' '.join(arguments)}",
                                      "COMMAND_TIMEOUT", {"arguments": arguments})
        except OSError as e:
            raise BackendCommandError(f"aerospace could not be executed: {e}",
                                      "COMMAND_NOT_RUNNABLE",
                                      {"executable": self.executable_path})

        if result.returncode != 0:
            raise BackendCommandError(
                f"aerospace command failed: {(result.stderr or '').strip()}",
                "COMMAND_FAILED",
                {"arguments": arguments, "returncode": result.returncode}
            )
        return result.stdout

    def _query_list(self, arguments: List[str]) -> List[dict]:
        output = self._run_aerospace(arguments)
        if not output or not output.strip():
            raise BackendCommandError("aerospace returned no output", "EMPTY_OUTPUT",
                                      {"arguments": arguments})
        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            raise BackendCommandError(f"Failed to parse aerospace JSON output: {e}",
                                      "INVALID_JSON", {"arguments": arguments})
        if not isinstance(data, list):
            raise BackendCommandError("aerospace returned an unexpected payload",
                                      "INVALID_PAYLOAD", {"arguments": arguments})
        if not all(isinstance(item, dict) for item in data):
            raise BackendCommandError("aerospace returned a list with non-object entries",
                                      "INVALID_PAYLOAD", {"arguments": arguments})
        return data

    def _fetch_spaces(self) -> List[AeroSpace]:
        data = self._query_list(["list-workspaces", "--all", "--json"])
        return [AeroSpace.from_dict(d) for d in data]

    def _fetch_windows(self) -> List[AeroWindow]:
        data = self._query_list(["list-windows", "--all", "--json", "--format", WINDOW_FORMAT])
        return [AeroWindow.from_dict(d, self.icon_lookup) for d in data]

    def get_spaces_with_windows(self) -> Optional[List[AeroSpace]]:
        """
        Workspaces with their windows in discovery order.

        Workspaces without windows are dropped unless focused. Returns None
        on failure.
        """
        try:
            spaces = self._fetch_spaces()
            windows = self._fetch_windows()
        except (BackendCommandError, KeyError, TypeError, ValueError) as e:
            get_error_handler().handle_error(
                error=e,
                component=self.name,
                function="get_spaces_with_windows",
                category=ErrorCategory.QUERY_FAILURE,
                severity=ErrorSeverity.MEDIUM
            )
            return None

        if any(space.reported_focus is None for space in spaces):
            focused_space_id = self.get_focused_space_id()
            for space in spaces:
                if space.reported_focus is None:
                    space.is_focused = space.workspace == focused_space_id

        if any(window.reported_focus is None for window in windows):
            focused_window_id = self.get_focused_window_id()
            for window in windows:
                if window.reported_focus is None:
                    window.is_focused = window.id == focused_window_id

        spaces_by_id = {space.workspace: space for space in spaces}
        for window in windows:
            space = spaces_by_id.get(window.workspace)
            if space is not None:
                space.windows.append(window)

        result = [space for space in spaces if space.windows or space.is_focused]
        logger.debug(f"Retrieved {len(result)} workspaces from AeroSpace")
        return result

    def get_focused_space_id(self) -> Optional[str]:
        try:
            data = self._query_list(["list-workspaces", "--focused", "--json"])
            return AeroSpace.from_dict(data[0]).workspace if data else None
        except (BackendCommandError, KeyError, TypeError, ValueError) as e:
            logger.debug(f"Focused AeroSpace workspace unavailable: {e}")
            return None

    def get_focused_window_id(self) -> Optional[int]:
        try:
            data = self._query_list(["list-windows", "--focused", "--json"])
            return int(data[0]['window-id']) if data else None
        except (BackendCommandError, KeyError, TypeError, ValueError) as e:
            logger.debug(f"Focused AeroSpace window unavailable: {e}")
            return None

    def focus_space(self, space_id: str, need_window_focus: bool = False):
        """Switch to a workspace, optionally making sure one of its windows has focus"""
        try:
            self._run_aerospace(["workspace", str(space_id)])
        except BackendCommandError as e:
            get_error_handler().handle_error(
                error=e,
                component=self.name,
                function="focus_space",
                category=ErrorCategory.COMMAND_FAILURE,
                severity=ErrorSeverity.MEDIUM
            )
            return

        if not need_window_focus:
            return

        timer = threading.Timer(self.window_focus_delay, self._ensure_window_focus,
                                args=(str(space_id),))
        timer.daemon = True
        timer.start()

    @error_handler_decorator("aerospace", ErrorCategory.COMMAND_FAILURE, reraise=False)
    def _ensure_window_focus(self, space_id: str):
        spaces = self.get_spaces_with_windows()
        if not spaces:
            return
        space = next((s for s in spaces if s.workspace == space_id), None)
        if space is None or not space.windows or any(w.is_focused for w in space.windows):
            return
        self._run_aerospace(["focus", "--window-id", str(space.windows[0].id)])
        logger.info(f"Focused window {space.windows[0].id} on workspace {space_id}")

    @error_handler_decorator("aerospace", ErrorCategory.COMMAND_FAILURE, reraise=False)
    def focus_window(self, window_id: str):
        self._run_aerospace(["focus", "--window-id", str(window_id)])
        logger.info(f"Focused window {window_id}")
