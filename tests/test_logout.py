"""Unit tests for logout."""

import asyncio
import os
import sys
import threading
import time
from unittest.mock import Mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../src"))

from fakes import FakeBrowser, FlakyTokenStore, make_config, make_id_token, make_token_set, query_of
from oidc_session.auth.browser import BrowserResult
from oidc_session.auth.logout import LogoutCoordinator
from oidc_session.auth.refresh import RefreshCoordinator
from oidc_session.auth.session_state import SessionPhase, SessionStateMachine
from oidc_session.auth.token_store import MemoryTokenStore
from oidc_session.utils.constants import TOKEN_STORE_KEY
from oidc_session.utils.errors import AuthError, MissingRefreshToken, StaleSessionError


class TestLogout:
    """Tests for local and remote teardown."""

    def signed_in(self, store, hook=None):
        session = SessionStateMachine(store, on_storage_error=hook)
        asyncio.run(session.apply_token_set(make_token_set(id_token=make_id_token())))
        return session

    def test_logout_clears_everything(self):
        store = MemoryTokenStore({TOKEN_STORE_KEY: "rt-1"})
        session = self.signed_in(store)
        browser = FakeBrowser(BrowserResult.dismissed())

        asyncio.run(LogoutCoordinator(make_config(), session, store, browser).logout())

        assert session.state.phase is SessionPhase.UNAUTHENTICATED
        assert session.state.user is None
        assert session.state.error is None
        assert session.access_token is None
        assert asyncio.run(store.get(TOKEN_STORE_KEY)) is None

    def test_opens_remote_logout_url(self):
        store = MemoryTokenStore()
        browser = FakeBrowser()

        asyncio.run(
            LogoutCoordinator(make_config(), self.signed_in(store), store, browser).logout()
        )

        url, _ = browser.calls[0]
        assert url.startswith("https://tenant.example.com/v2/logout?")
        assert query_of(url) == {
            "client_id": "client-123",
            "returnTo": "http://localhost:9877/callback",
        }

    def test_remote_and_delete_failures(self):
        hook = Mock()
        store = FlakyTokenStore({TOKEN_STORE_KEY: "rt-1"}, failing=("delete",))
        session = self.signed_in(store, hook)
        browser = FakeBrowser(RuntimeError("browser crashed"))

        asyncio.run(LogoutCoordinator(make_config(), session, store, browser).logout())

        assert session.state.phase is SessionPhase.UNAUTHENTICATED
        assert session.state.user is None
        assert asyncio.run(store.get(TOKEN_STORE_KEY)) == ""
        assert hook.call_args[0][0].operation == "delete"

    def test_storage_unavailable(self):
        hook = Mock()
        store = FlakyTokenStore({TOKEN_STORE_KEY: "rt-1"}, failing=("delete", "set"))
        session = self.signed_in(store, hook)

        asyncio.run(LogoutCoordinator(make_config(), session, store, FakeBrowser()).logout())

        assert session.state.phase is SessionPhase.UNAUTHENTICATED
        assert session.access_token is None
        assert [call[0][0].operation for call in hook.call_args_list] == ["delete", "set"]

    def test_in_flight_refresh_is_discarded(self):
        store = MemoryTokenStore({TOKEN_STORE_KEY: "rt-1"})
        session = SessionStateMachine(store)
        refresher = RefreshCoordinator(make_config(), session, store)
        logout = LogoutCoordinator(make_config(), session, store, FakeBrowser())
        exchange_started = threading.Event()

        def slow_exchange(refresh_token):
            exchange_started.set()
            time.sleep(0.1)
            return make_token_set(access_token="access-late", refresh_token="rt-late")

        refresher._exchange = slow_exchange

        async def scenario():
            pending = asyncio.ensure_future(refresher.get_access_token_silently())
            while not exchange_started.is_set():
                await asyncio.sleep(0.005)
            await logout.logout()
            return await asyncio.gather(pending, return_exceptions=True)

        (result,) = asyncio.run(scenario())

        assert isinstance(result, StaleSessionError)
        assert session.state.phase is SessionPhase.UNAUTHENTICATED
        assert session.access_token is None
        assert asyncio.run(store.get(TOKEN_STORE_KEY)) is None

    def test_refresh_during_remote_logout_stays_signed_out(self):
        store = MemoryTokenStore({TOKEN_STORE_KEY: "rt-1"})
        session = self.signed_in(store)
        refresher = RefreshCoordinator(make_config(), session, store)
        refresher._exchange = Mock(return_value=make_token_set(access_token="access-late"))
        errors = []

        class RefreshingBrowser(FakeBrowser):
            async def open(self, url, options):
                try:
                    await refresher.get_access_token_silently()
                except AuthError as e:
                    errors.append(e)
                return await super().open(url, options)

        browser = RefreshingBrowser()
        asyncio.run(LogoutCoordinator(make_config(), session, store, browser).logout())

        assert len(browser.calls) == 1
        assert [type(e) for e in errors] == [MissingRefreshToken]
        refresher._exchange.assert_not_called()
        assert session.state.phase is SessionPhase.UNAUTHENTICATED
        assert session.state.user is None
        assert session.access_token is None
        assert asyncio.run(store.get(TOKEN_STORE_KEY)) is None

    def test_refresh_racing_token_removal_is_discarded(self):
        refresher = None

        class RacingStore(MemoryTokenStore):
            async def delete(self, key):
                # Reads the token before it is gone and finishes first
                await refresher.get_access_token_silently()
                await super().delete(key)

        store = RacingStore({TOKEN_STORE_KEY: "rt-1"})
        session = self.signed_in(store)
        refresher = RefreshCoordinator(make_config(), session, store)
        refresher._exchange = Mock(
            return_value=make_token_set(access_token="access-late", refresh_token="rt-late")
        )

        asyncio.run(LogoutCoordinator(make_config(), session, store, FakeBrowser()).logout())

        refresher._exchange.assert_called_once_with("rt-1")
        assert session.state.phase is SessionPhase.UNAUTHENTICATED
        assert session.access_token is None
        assert asyncio.run(store.get(TOKEN_STORE_KEY)) is None
