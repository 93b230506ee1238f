"""
Test configuration and fixtures for spacesync tests
"""

import json
import os
import shutil
import sys
import tempfile
import threading
import time
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from spaces_config import SpacesConfig
from spaces_controller import (
    EventBasedSpacesProvider, FocusAwareSpacesProvider, Space, SpaceEvent,
    SpacesProvider, SwitchableSpacesProvider, Window
)
from error_handler import get_error_handler
from spaces_sync import SpacesSynchronizer
from main import app


@pytest.fixture
def client():
    """FastAPI test client"""
    return TestClient(app)


@pytest.fixture
def mock_synchronizer():
    """Synchronizer mock installed on the app state"""
    synchronizer = Mock(spec=SpacesSynchronizer)
    app.state.synchronizer = synchronizer
    yield synchronizer
    app.state.synchronizer = None


@pytest.fixture
def temp_dir():
    """Short temporary directory, usable for AF_UNIX socket paths"""
    temp_dir = tempfile.mkdtemp(prefix="ss-")
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir):
    """Configuration with fast timings and a private socket path"""
    return SpacesConfig(
        yabai_path="/usr/local/bin/yabai",
        aerospace_path="/usr/local/bin/aerospace",
        yabai_socket_path=os.path.join(temp_dir, "yabai.sock"),
        poll_interval=0.05,
        window_focus_delay=0.0,
        command_timeout=1.0
    )


@pytest.fixture(autouse=True)
def clean_error_log():
    """Each test starts with an empty error log"""
    get_error_handler().clear_error_log()
    yield
    get_error_handler().clear_error_log()


@pytest.fixture
def yabai_spaces_data():
    """Output of `yabai -m query --spaces`"""
    return [
        {"id": 11, "uuid": "A1", "index": 1, "label": "", "type": "bsp",
         "display": 1, "has-focus": True, "is-visible": True},
        {"id": 12, "uuid": "B2", "index": 2, "label": "", "type": "bsp",
         "display": 1, "has-focus": False, "is-visible": False},
        {"id": 13, "uuid": "C3", "index": 3, "label": "", "type": "bsp",
         "display": 1, "has-focus": False, "is-visible": False},
    ]


@pytest.fixture
def yabai_windows_data():
    """Output of `yabai -m query --windows`"""
    return [
        {"id": 102, "app": "Safari", "title": "Docs", "space": 1, "stack-index": 2,
         "has-focus": False, "is-hidden": False, "is-floating": False, "is-sticky": False},
        {"id": 101, "app": "Terminal", "title": "zsh", "space": 1, "stack-index": 1,
         "has-focus": True, "is-hidden": False, "is-floating": False, "is-sticky": False},
        {"id": 201, "app": "Finder", "title": "Downloads", "space": 2, "stack-index": 0,
         "has-focus": False, "is-hidden": False, "is-floating": True, "is-sticky": False},
        {"id": 301, "app": "Mail", "title": "Inbox", "space": 3, "stack-index": 0,
         "has-focus": False, "is-hidden": False, "is-floating": False, "is-sticky": False},
        {"id": 302, "app": "Notes", "title": "", "space": 3, "stack-index": 1,
         "has-focus": False, "is-hidden": True, "is-floating": False, "is-sticky": False},
        {"id": 303, "app": "Clock", "title": "Clock", "space": 3, "stack-index": 2,
         "has-focus": False, "is-hidden": False, "is-floating": False, "is-sticky": True},
    ]


@pytest.fixture
def aerospace_workspaces_data():
    """Output of `aerospace list-workspaces --all --json`"""
    return [{"workspace": "1"}, {"workspace": "2"}, {"workspace": "3"}, {"workspace": "web"}]


@pytest.fixture
def aerospace_windows_data():
    """Output of `aerospace list-windows --all --json --format ...`"""
    return [
        {"window-id": 7, "app-name": "Ghostty", "window-title": "~", "workspace": "web"},
        {"window-id": 5, "app-name": "Firefox", "window-title": "News", "workspace": "1"},
        {"window-id": 9, "app-name": "Slack", "window-title": "general", "workspace": "1"},
    ]


def completed(stdout="", returncode=0, stderr=""):
    """Mock of subprocess.CompletedProcess"""
    return Mock(returncode=returncode, stdout=stdout, stderr=stderr)


def cli_responder(responses):
    """
    Build a subprocess.run side effect answering by argument vector.

    Args:
        responses: Maps the arguments after the executable (as a tuple) to
            a JSON-serializable payload, a completed() mock or an exception
    """
    calls = []

    def run(command, **kwargs):
        arguments = tuple(command[1:])
        calls.append(arguments)
        if arguments not in responses:
            return completed(returncode=1, stderr="unknown command")
        response = responses[arguments]
        if isinstance(response, Exception):
            raise response
        if isinstance(response, Mock):
            return response
        return completed(stdout=json.dumps(response))

    run.calls = calls
    return run


def wait_for(predicate, timeout=3.0, interval=0.01):
    """Poll predicate until it is true or timeout expires"""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def make_space(space_id, focused=False, window_ids=()):
    return Space(id=str(space_id), is_focused=focused,
                 windows=[Window(id=i, title=f"window {i}", app_name="App") for i in window_ids])


class StaticSpacesProvider(SpacesProvider):
    """Query-only provider returning a fixed result"""

    name = "static"

    def __init__(self, spaces=None):
        self.spaces = spaces
        self.query_count = 0

    def get_spaces_with_windows(self):
        self.query_count += 1
        return self.spaces


class FullSpacesProvider(FocusAwareSpacesProvider, SwitchableSpacesProvider):
    """Polled provider recording focus commands"""

    name = "full"

    def __init__(self, spaces=None):
        self.spaces = spaces
        self.focus_calls = []
        self.focus_done = threading.Event()

    def get_spaces_with_windows(self):
        return self.spaces

    def get_focused_space_id(self):
        return next((s.id for s in self.spaces or [] if s.is_focused), None)

    def get_focused_window_id(self):
        return 42

    def focus_space(self, space_id, need_window_focus):
        self.focus_calls.append(("space", space_id, need_window_focus))
        self.focus_done.set()

    def focus_window(self, window_id):
        self.focus_calls.append(("window", window_id))
        self.focus_done.set()


class FakeEventProvider(EventBasedSpacesProvider, SwitchableSpacesProvider):
    """Event-based provider driven by the test through emit()"""

    name = "fake-events"

    def __init__(self, spaces=None):
        super().__init__()
        self.spaces = spaces or []
        self.observing = False
        self.start_count = 0
        self.stop_count = 0
        self.focus_calls = []

    def get_spaces_with_windows(self):
        return self.spaces

    def start_observing(self):
        self.observing = True
        self.start_count += 1
        self._emit(SpaceEvent.initial_state(self.spaces))

    def stop_observing(self):
        self.observing = False
        self.stop_count += 1

    def emit(self, event):
        self._emit(event)

    def focus_space(self, space_id, need_window_focus):
        self.focus_calls.append(("space", space_id, need_window_focus))

    def focus_window(self, window_id):
        raise RuntimeError("window focus failed")


def assert_api_success(response, expected_keys=None):
    """Assert API response is successful"""
    assert response.status_code == 200
    data = response.json()
    assert data.get("success") is True

    if expected_keys:
        for key in expected_keys:
            assert key in data


def assert_api_error(response, expected_status=400):
    """Assert API response is an error"""
    assert response.status_code == expected_status
    data = response.json()
    assert data.get("success") is False
    assert "error" in data
