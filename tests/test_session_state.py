"""Unit tests for the session state machine."""

import asyncio
import os
import sys
from unittest.mock import Mock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../src"))

from fakes import FlakyTokenStore, make_id_token, make_jwt, make_token_set
from oidc_session.auth.session_state import SessionPhase, SessionState, SessionStateMachine
from oidc_session.auth.token_store import MemoryTokenStore
from oidc_session.utils.constants import TOKEN_STORE_KEY
from oidc_session.utils.errors import AuthorizationDenied, StorageFailure, TokenExchangeFailure


class TestSessionStateMachine:
    """Tests for session transitions."""

    def setup_method(self):
        self.store = MemoryTokenStore()
        self.session = SessionStateMachine(self.store)

    def test_initial_state_is_loading(self):
        assert self.session.state.phase is SessionPhase.LOADING
        assert self.session.state.is_loading
        assert self.session.access_token is None

    def test_apply_token_set_with_identity_token(self):
        token_set = make_token_set(id_token=make_id_token(), refresh_token="rt-1")
        applied = asyncio.run(self.session.apply_token_set(token_set))

        state = self.session.state
        assert applied
        assert state.phase is SessionPhase.AUTHENTICATED
        assert state.is_authenticated
        assert state.user.subject == "auth0|user-1"
        assert state.user.name == "Ada Lovelace"
        assert state.error is None
        assert self.session.access_token == "access-1"
        assert asyncio.run(self.store.get(TOKEN_STORE_KEY)) == "rt-1"

    def test_apply_token_set_with_malformed_identity_token(self):
        token_set = make_token_set(id_token="not-a-jwt")
        asyncio.run(self.session.apply_token_set(token_set))

        assert self.session.state.phase is SessionPhase.AUTHENTICATED
        assert self.session.state.user is None
        assert self.session.access_token == "access-1"

    def test_apply_token_set_with_out_of_range_identity_expiry(self):
        token_set = make_token_set(id_token=make_jwt({"sub": "auth0|user-1", "exp": 1e20}))

        applied = asyncio.run(self.session.apply_token_set(token_set))

        assert applied
        assert self.session.state.phase is SessionPhase.AUTHENTICATED
        assert self.session.state.user is None
        assert self.session.access_token == "access-1"

    def test_reset_when_already_cleared_only_bumps_generation(self):
        self.session.reset()
        listener = Mock()
        self.session.subscribe(listener)
        generation = self.session.generation

        assert self.session.reset() == generation + 1
        listener.assert_not_called()

    def test_apply_token_set_without_refresh_token_keeps_stored_one(self):
        asyncio.run(self.store.set(TOKEN_STORE_KEY, "rt-old"))
        asyncio.run(self.session.apply_token_set(make_token_set()))
        assert asyncio.run(self.store.get(TOKEN_STORE_KEY)) == "rt-old"

    def test_persistence_failure_does_not_fail_transition(self):
        hook = Mock()
        session = SessionStateMachine(FlakyTokenStore(failing=("set",)), on_storage_error=hook)

        applied = asyncio.run(session.apply_token_set(make_token_set(refresh_token="rt-1")))

        assert applied
        assert session.state.phase is SessionPhase.AUTHENTICATED
        hook.assert_called_once()
        error = hook.call_args[0][0]
        assert isinstance(error, StorageFailure)
        assert error.operation == "set"

    def test_apply_failure(self):
        asyncio.run(self.session.apply_token_set(make_token_set(id_token=make_id_token())))
        self.session.apply_failure(TokenExchangeFailure("Token refresh failed: invalid_grant"))

        state = self.session.state
        assert state.phase is SessionPhase.UNAUTHENTICATED
        assert not state.is_authenticated
        assert state.user is None
        assert state.error.code == "token_exchange_failure"
        assert state.error.message == "Token refresh failed: invalid_grant"
        assert self.session.access_token is None

    def test_fatal_failure_enters_error_phase(self):
        self.session.apply_failure(RuntimeError("browser crashed"), fatal=True)
        assert self.session.state.phase is SessionPhase.ERROR
        assert self.session.state.error.message == "browser crashed"

    def test_begin_loading_preserves_authentication_flag(self):
        asyncio.run(self.session.apply_token_set(make_token_set(id_token=make_id_token())))
        self.session.begin_loading()

        state = self.session.state
        assert state.phase is SessionPhase.LOADING
        assert state.is_authenticated
        assert state.user is None

    def test_begin_loading_from_error_clears_error(self):
        self.session.apply_failure(AuthorizationDenied("User denied access"))
        self.session.begin_loading()
        assert self.session.state.error is None
        assert not self.session.state.is_authenticated

    def test_mark_unauthenticated_has_no_error(self):
        self.session.mark_unauthenticated()
        assert self.session.state.phase is SessionPhase.UNAUTHENTICATED
        assert self.session.state.error is None

    def test_reset_clears_state_and_bumps_generation(self):
        asyncio.run(self.session.apply_token_set(make_token_set(id_token=make_id_token())))
        generation = self.session.generation

        assert self.session.reset() == generation + 1
        assert self.session.state == SessionState(phase=SessionPhase.UNAUTHENTICATED)
        assert self.session.access_token is None

    def test_stale_token_set_is_discarded(self):
        generation = self.session.generation
        self.session.reset()

        applied = asyncio.run(
            self.session.apply_token_set(make_token_set(refresh_token="rt-late"), generation)
        )

        assert not applied
        assert self.session.state.phase is SessionPhase.UNAUTHENTICATED
        assert self.session.access_token is None
        assert asyncio.run(self.store.get(TOKEN_STORE_KEY)) is None

    def test_stale_failure_is_discarded(self):
        generation = self.session.generation
        self.session.reset()

        assert not self.session.apply_failure(TokenExchangeFailure("late"), generation)
        assert self.session.state.error is None


class TestSessionObservers:
    """Tests for state notifications."""

    def setup_method(self):
        self.session = SessionStateMachine(MemoryTokenStore())

    def test_listener_sees_complete_states(self):
        seen = []
        self.session.subscribe(seen.append)

        asyncio.run(self.session.apply_token_set(make_token_set(id_token=make_id_token())))
        self.session.reset()

        assert [s.phase for s in seen] == [SessionPhase.AUTHENTICATED, SessionPhase.UNAUTHENTICATED]
        assert seen[0].user is not None
        assert seen[1].user is None

    def test_unsubscribe(self):
        listener = Mock()
        unsubscribe = self.session.subscribe(listener)
        unsubscribe()

        self.session.mark_unauthenticated()
        listener.assert_not_called()

    def test_failing_listener_does_not_block_others(self):
        other = Mock()
        self.session.subscribe(Mock(side_effect=RuntimeError("boom")))
        self.session.subscribe(other)

        self.session.mark_unauthenticated()

        other.assert_called_once_with(self.session.state)


class TestSessionState:
    """Tests for the state snapshot itself."""

    def test_user_only_when_authenticated(self):
        from oidc_session.auth.tokens import UserClaims

        with pytest.raises(ValueError):
            SessionState(phase=SessionPhase.LOADING, user=UserClaims(subject="auth0|1"))
