"""
Tests for the AeroSpace adapter
"""

import pytest
from unittest.mock import patch

from adapters.aerospace_adapter import AerospaceSpacesProvider, WINDOW_FORMAT
from error_handler import ErrorCategory, get_error_handler
from conftest import cli_responder, completed, wait_for

WORKSPACES = ("list-workspaces", "--all", "--json")
WINDOWS = ("list-windows", "--all", "--json", "--format", WINDOW_FORMAT)
FOCUSED_WORKSPACE = ("list-workspaces", "--focused", "--json")
FOCUSED_WINDOW = ("list-windows", "--focused", "--json")


@pytest.fixture
def aerospace_responses(aerospace_workspaces_data, aerospace_windows_data):
    return {
        WORKSPACES: aerospace_workspaces_data,
        WINDOWS: aerospace_windows_data,
        FOCUSED_WORKSPACE: [{"workspace": "2"}],
        FOCUSED_WINDOW: [{"window-id": 9, "app-name": "Slack", "window-title": "general"}],
    }


@pytest.fixture
def provider(test_config):
    return AerospaceSpacesProvider(config=test_config)


class TestAerospaceQueries:
    """Test workspace and window listing"""

    def test_spaces_with_windows(self, provider, aerospace_responses):
        run = cli_responder(aerospace_responses)
        with patch('adapters.aerospace_adapter.subprocess.run', side_effect=run):
            spaces = provider.get_spaces_with_windows()

        # "3" is empty and unfocused; "2" is empty but focused
        assert [s.id for s in spaces] == ["1", "2", "web"]
        assert [s.is_focused for s in spaces] == [False, True, False]
        assert [w.id for w in spaces[0].windows] == [5, 9]
        assert [w.is_focused for w in spaces[0].windows] == [False, True]
        assert spaces[1].windows == []

    def test_reported_focus_skips_focus_queries(self, provider, aerospace_responses,
                                                aerospace_workspaces_data, aerospace_windows_data):
        aerospace_responses[WORKSPACES] = [dict(w, **{"workspace-is-focused": w["workspace"] == "web"})
                                           for w in aerospace_workspaces_data]
        aerospace_responses[WINDOWS] = [dict(w, **{"has-focus": w["window-id"] == 7})
                                        for w in aerospace_windows_data]
        run = cli_responder(aerospace_responses)
        with patch('adapters.aerospace_adapter.subprocess.run', side_effect=run):
            spaces = provider.get_spaces_with_windows()

        assert run.calls == [WORKSPACES, WINDOWS]
        assert [s.id for s in spaces if s.is_focused] == ["web"]
        assert spaces[-1].windows[0].is_focused is True

    def test_failure_returns_none(self, provider, aerospace_workspaces_data):
        run = cli_responder({WORKSPACES: aerospace_workspaces_data})
        with patch('adapters.aerospace_adapter.subprocess.run', side_effect=run):
            assert provider.get_spaces_with_windows() is None

        errors = get_error_handler().get_recent_errors(category=ErrorCategory.QUERY_FAILURE)
        assert len(errors) == 1
        assert errors[0].component == "aerospace"

    def test_non_list_payload_returns_none(self, provider):
        run = cli_responder({WORKSPACES: {"workspace": "1"}})
        with patch('adapters.aerospace_adapter.subprocess.run', side_effect=run):
            assert provider.get_spaces_with_windows() is None

    def test_non_object_entries_return_none(self, provider):
        run = cli_responder({WORKSPACES: [1, 2]})
        with patch('adapters.aerospace_adapter.subprocess.run', side_effect=run):
            assert provider.get_spaces_with_windows() is None
            assert provider.get_focused_space_id() is None

    def test_malformed_window_returns_none(self, provider, aerospace_workspaces_data):
        run = cli_responder({WORKSPACES: aerospace_workspaces_data,
                             WINDOWS: [{"window-id": "x", "window-title": "t"}]})
        with patch('adapters.aerospace_adapter.subprocess.run', side_effect=run):
            assert provider.get_spaces_with_windows() is None

    def test_unavailable_focus_leaves_nothing_focused(self, provider, aerospace_workspaces_data,
                                                      aerospace_windows_data):
        run = cli_responder({WORKSPACES: aerospace_workspaces_data, WINDOWS: aerospace_windows_data})
        with patch('adapters.aerospace_adapter.subprocess.run', side_effect=run):
            spaces = provider.get_spaces_with_windows()

        assert [s.id for s in spaces] == ["1", "web"]
        assert not any(s.is_focused for s in spaces)

    def test_focused_ids(self, provider, aerospace_responses):
        with patch('adapters.aerospace_adapter.subprocess.run',
                   side_effect=cli_responder(aerospace_responses)):
            assert provider.get_focused_space_id() == "2"
            assert provider.get_focused_window_id() == 9

    def test_focused_ids_when_nothing_focused(self, provider):
        run = cli_responder({FOCUSED_WORKSPACE: [], FOCUSED_WINDOW: []})
        with patch('adapters.aerospace_adapter.subprocess.run', side_effect=run):
            assert provider.get_focused_space_id() is None
            assert provider.get_focused_window_id() is None


class TestAerospaceFocus:
    """Test workspace and window focus commands"""

    def test_focus_space(self, provider):
        run = cli_responder({("workspace", "web"): completed()})
        with patch('adapters.aerospace_adapter.subprocess.run', side_effect=run):
            provider.focus_space("web")
        assert run.calls == [("workspace", "web")]

    def test_focus_space_failure_stops(self, provider):
        run = cli_responder({})
        with patch('adapters.aerospace_adapter.subprocess.run', side_effect=run):
            provider.focus_space("web", need_window_focus=True)
        assert run.calls == [("workspace", "web")]

        errors = get_error_handler().get_recent_errors(category=ErrorCategory.COMMAND_FAILURE)
        assert [e.function for e in errors] == ["focus_space"]

    def test_focus_space_focuses_first_window(self, provider, aerospace_responses):
        aerospace_responses[("workspace", "web")] = completed()
        aerospace_responses[("focus", "--window-id", "7")] = completed()
        run = cli_responder(aerospace_responses)
        with patch('adapters.aerospace_adapter.subprocess.run', side_effect=run):
            provider.focus_space("web", need_window_focus=True)
            assert wait_for(lambda: ("focus", "--window-id", "7") in run.calls)

    def test_focus_window(self, provider):
        run = cli_responder({("focus", "--window-id", "5"): completed()})
        with patch('adapters.aerospace_adapter.subprocess.run', side_effect=run):
            provider.focus_window("5")
        assert run.calls == [("focus", "--window-id", "5")]
        assert get_error_handler().get_recent_errors() == []
