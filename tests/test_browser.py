"""Unit tests for the browser capability and the loopback redirect listener."""

import asyncio
import os
import sys
from unittest.mock import patch

from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../src"))

from oidc_session.auth.browser import (
    BrowserResult,
    BrowserResultType,
    LoopbackBrowserLauncher,
    PresentationOptions,
    result_from_params,
)

REDIRECT_URI = "http://localhost:9877/callback"


class TestResultFromParams:
    """Tests for mapping redirect parameters to results."""

    def test_code(self):
        result = result_from_params({"code": "abc", "state": "s-1"})

        assert result.type is BrowserResultType.SUCCESS
        assert result.code == "abc"
        assert result.params["state"] == "s-1"

    def test_error(self):
        result = result_from_params(
            {"error": "access_denied", "error_description": "User cancelled"}
        )

        assert result.type is BrowserResultType.ERROR
        assert result.error_code == "access_denied"
        assert result.error_description == "User cancelled"

    def test_error_wins_over_code(self):
        result = result_from_params({"error": "server_error", "code": "abc"})
        assert result.type is BrowserResultType.ERROR

    def test_no_code_is_a_plain_return(self):
        # e.g. the browser coming back from remote logout
        result = result_from_params({})

        assert result.type is BrowserResultType.DISMISS
        assert result.is_abandoned


class TestLoopbackCallback:
    """Tests for the redirect route."""

    def setup_method(self):
        self.launcher = LoopbackBrowserLauncher(REDIRECT_URI)
        self.client = TestClient(self.launcher.app)

    def test_route_follows_redirect_uri(self):
        launcher = LoopbackBrowserLauncher("http://127.0.0.1:8123/oauth/done")

        assert launcher.hostname == "127.0.0.1"
        assert launcher.port == 8123
        assert launcher.callback_path == "/oauth/done"

    def test_redirect_without_pending_login(self):
        response = self.client.get("/callback", params={"code": "abc"})

        assert response.status_code == 409
        assert not self.launcher.deliver(BrowserResult.dismissed())

    def test_stop_without_start(self):
        self.launcher.stop()
        assert not self.launcher.is_running

    def test_error_page_is_escaped(self):
        response = self.client.get(
            "/callback",
            params={"error": "access_denied", "error_description": "<script>x</script>"},
        )

        assert response.status_code == 400
        assert "<script>x</script>" not in response.text
        assert "&lt;script&gt;" in response.text


class TestLoopbackOpen:
    """Tests for a full round-trip with the listener and browser patched out."""

    def setup_method(self):
        self.launcher = LoopbackBrowserLauncher(REDIRECT_URI)
        self.client = TestClient(self.launcher.app)

    def open(self, browser_side_effect, timeout_seconds=5.0):
        with patch.object(self.launcher, "start", return_value=(True, "")), patch.object(
            self.launcher, "_open_browser", side_effect=browser_side_effect
        ) as mock_open:
            result = asyncio.run(
                self.launcher.open(
                    "https://tenant.example.com/authorize?x=1",
                    PresentationOptions(timeout_seconds=timeout_seconds),
                )
            )
        self.browser_calls = mock_open.call_args_list
        return result

    def test_redirect_resolves_open(self):
        def browser(url, options):
            response = self.client.get("/callback", params={"code": "abc", "state": "s-1"})
            assert response.status_code == 200
            return True

        result = self.open(browser)

        assert result.type is BrowserResultType.SUCCESS
        assert result.code == "abc"
        assert result.params == {"code": "abc", "state": "s-1"}
        assert self.browser_calls[0].args[0] == "https://tenant.example.com/authorize?x=1"

    def test_timeout_is_dismiss(self):
        result = self.open(lambda url, options: True, timeout_seconds=0.05)

        assert result.type is BrowserResultType.DISMISS
        assert self.launcher._pending is None

    def test_browser_not_opened_is_cancel(self):
        result = self.open(lambda url, options: False)
        assert result.type is BrowserResultType.CANCEL

    def test_listener_unavailable(self):
        with patch.object(self.launcher, "start", return_value=(False, "Port 9877 is already in use")):
            result = asyncio.run(self.launcher.open("https://x", PresentationOptions()))

        assert result.type is BrowserResultType.ERROR
        assert "already in use" in result.error_description
