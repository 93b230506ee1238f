"""
Tests for API endpoints
"""

import pytest

from spaces_controller import Window
from error_handler import ErrorCategory, get_error_handler
from conftest import assert_api_success, assert_api_error, make_space


class TestSpacesAPI:
    """Test spaces API endpoints"""

    def test_list_spaces(self, client, mock_synchronizer):
        """Test listing the published spaces"""
        mock_synchronizer.current_spaces.return_value = [
            make_space("1", True, [10]),
            make_space("web", False, []),
        ]

        response = client.get("/spaces")

        assert_api_success(response, ["spaces", "count"])
        data = response.json()
        assert data["count"] == 2
        assert data["spaces"][0] == {
            "id": "1",
            "is_focused": True,
            "windows": [{"id": 10, "title": "window 10", "app_name": "App", "is_focused": False}]
        }
        assert data["spaces"][1]["windows"] == []

    def test_status(self, client, mock_synchronizer):
        """Test monitoring status endpoint"""
        mock_synchronizer.get_status.return_value = {
            "backend": "yabai", "event_based": True, "state": "monitoring",
            "space_count": 3, "publish_count": 7, "channel_error": None
        }

        response = client.get("/spaces/status")

        assert_api_success(response, ["status"])
        assert response.json()["status"]["backend"] == "yabai"

    def test_focused(self, client, mock_synchronizer):
        """Test focused space and window endpoint"""
        mock_synchronizer.get_focused_ids.return_value = {"space_id": "2", "window_id": 31}

        response = client.get("/spaces/focused")

        assert_api_success(response)
        assert response.json()["space_id"] == "2"
        assert response.json()["window_id"] == 31

    def test_focus_space(self, client, mock_synchronizer):
        """Test space focus request"""
        response = client.post("/spaces/focus", json={"space_id": "3", "need_window_focus": True})

        assert_api_success(response, ["message"])
        mock_synchronizer.request_focus_space.assert_called_once_with("3", True)

    def test_focus_space_default_window_focus(self, client, mock_synchronizer):
        client.post("/spaces/focus", json={"space_id": "web"})
        mock_synchronizer.request_focus_space.assert_called_once_with("web", False)

    def test_focus_space_empty_id(self, client, mock_synchronizer):
        """Test space focus request validation"""
        response = client.post("/spaces/focus", json={"space_id": "  "})

        assert_api_error(response, 400)
        mock_synchronizer.request_focus_space.assert_not_called()
        errors = get_error_handler().get_recent_errors(category=ErrorCategory.API)
        assert errors[0].function == "/spaces/focus"

    def test_focus_space_missing_field(self, client, mock_synchronizer):
        response = client.post("/spaces/focus", json={})
        assert response.status_code == 422

    def test_focus_window(self, client, mock_synchronizer):
        """Test window focus request"""
        response = client.post("/windows/focus", json={"window_id": 31})

        assert_api_success(response, ["window_id"])
        mock_synchronizer.request_focus_window.assert_called_once_with(31)

    def test_synchronizer_not_running(self, client):
        """Test endpoints before the synchronizer is installed"""
        response = client.get("/spaces")
        assert_api_error(response, 503)


class TestErrorsAPI:
    """Test error inspection endpoints"""

    def test_error_stats(self, client):
        get_error_handler().handle_error(
            RuntimeError("query failed"), "yabai", "get_spaces_with_windows",
            ErrorCategory.QUERY_FAILURE
        )

        response = client.get("/errors/stats")

        assert_api_success(response, ["statistics"])
        statistics = response.json()["statistics"]
        assert statistics["total_errors"] == 1
        assert statistics["category_counts"] == {"query_failure": 1}

    def test_recent_errors(self, client):
        for i in range(3):
            get_error_handler().handle_error(
                RuntimeError(f"failure {i}"), "aerospace", "focus_window",
                ErrorCategory.COMMAND_FAILURE
            )

        response = client.get("/errors/recent?limit=2")

        assert_api_success(response, ["errors"])
        data = response.json()
        assert data["count"] == 2
        assert data["errors"][0]["category"] == "command_failure"

    @pytest.mark.parametrize("limit", [0, 1001])
    def test_recent_errors_limit_validation(self, client, limit):
        response = client.get(f"/errors/recent?limit={limit}")
        assert_api_error(response, 400)


class TestSpaceSerialization:
    """Test JSON shape of published spaces"""

    def test_icon_is_not_serialized(self, client, mock_synchronizer):
        mock_synchronizer.current_spaces.return_value = [
            make_space("1").with_windows([Window(id=5, title="t", app_icon=object())])
        ]

        response = client.get("/spaces")

        assert "app_icon" not in response.json()["spaces"][0]["windows"][0]
