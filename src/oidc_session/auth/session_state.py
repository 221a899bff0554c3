"""
Session State Machine for the OIDC session manager.

Owns the authenticated/unauthenticated/loading/error phase, the decoded user
and the in-memory access token. Every transition swaps one immutable
SessionState under a lock, so observers never see a half-applied update.
Each reset starts a new session generation; results of asynchronous work
started in an older generation are discarded.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from threading import RLock
from typing import Callable, List, Optional

from ..utils.constants import TOKEN_STORE_KEY
from ..utils.errors import DecodeFailure, ErrorInfo, StorageFailure
from .token_store import TokenStore
from .tokens import IdentityTokenDecoder, TokenSet, UserClaims, UnverifiedJwtDecoder

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"
    ERROR = "error"


@dataclass(frozen=True)
class SessionState:
    """Snapshot of the session as seen by observers.

    ``is_authenticated`` is carried through LOADING so a login started from an
    authenticated session does not flicker to signed-out.
    """

    phase: SessionPhase
    is_authenticated: bool = False
    user: Optional[UserClaims] = None
    error: Optional[ErrorInfo] = None

    def __post_init__(self) -> None:
        if self.user is not None and self.phase is not SessionPhase.AUTHENTICATED:
            raise ValueError("user is only present in the authenticated phase")

    @property
    def is_loading(self) -> bool:
        return self.phase is SessionPhase.LOADING


StateListener = Callable[[SessionState], None]
StorageErrorHook = Callable[[StorageFailure], None]

INITIAL_STATE = SessionState(phase=SessionPhase.LOADING)


class SessionStateMachine:
    """
    The single session owned by the process.

    Other components hold a reference to it and drive transitions through
    apply_token_set, apply_failure, mark_unauthenticated and reset.
    """

    def __init__(
        self,
        token_store: TokenStore,
        decoder: Optional[IdentityTokenDecoder] = None,
        on_storage_error: Optional[StorageErrorHook] = None,
        storage_key: str = TOKEN_STORE_KEY,
    ) -> None:
        self._token_store = token_store
        self._decoder = decoder or UnverifiedJwtDecoder()
        self._on_storage_error = on_storage_error
        self._storage_key = storage_key

        self._state = INITIAL_STATE
        self._token_set: Optional[TokenSet] = None
        self._generation = 0
        self._listeners: List[StateListener] = []
        self._lock = RLock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def token_set(self) -> Optional[TokenSet]:
        return self._token_set

    @property
    def access_token(self) -> Optional[str]:
        token_set = self._token_set
        return token_set.access_token if token_set else None

    @property
    def storage_key(self) -> str:
        return self._storage_key

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a listener called with every new state.

        Returns:
            A callable that removes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, state: SessionState) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Session state listener failed")

    def _is_stale(self, generation: Optional[int], what: str) -> bool:
        if generation is not None and generation != self._generation:
            logger.info(
                "Discarding %s from session generation %d (current %d)",
                what,
                generation,
                self._generation,
            )
            return True
        return False

    def _transition(
        self,
        state: SessionState,
        token_set: Optional[TokenSet],
        generation: Optional[int],
        what: str,
    ) -> bool:
        with self._lock:
            if self._is_stale(generation, what):
                return False
            previous = self._state.phase
            self._state = state
            self._token_set = token_set
        logger.info("Session %s -> %s", previous.value, state.phase.value)
        self._notify(state)
        return True

    def begin_loading(self) -> int:
        """
        Enter LOADING, keeping the previous is_authenticated flag.

        Returns:
            The session generation the caller's work belongs to.
        """
        with self._lock:
            state = SessionState(
                phase=SessionPhase.LOADING,
                is_authenticated=self._state.is_authenticated,
            )
            self._transition(state, self._token_set, None, "loading")
            return self._generation

    def _decode_user(self, id_token: Optional[str]) -> Optional[UserClaims]:
        if not id_token:
            return None
        try:
            return UserClaims.from_claims(self._decoder.decode(id_token))
        except DecodeFailure as e:
            logger.warning(f"Identity token could not be decoded, continuing without user: {e}")
            return None

    async def apply_token_set(
        self, token_set: TokenSet, generation: Optional[int] = None
    ) -> bool:
        """
        Authenticate the session with a fresh token set.

        A rotated refresh token is persisted after the transition; storage
        failures are reported and never undo it.

        Returns:
            False if the token set belonged to an older session generation.
        """
        user = self._decode_user(token_set.id_token)
        state = SessionState(
            phase=SessionPhase.AUTHENTICATED,
            is_authenticated=True,
            user=user,
        )
        if not self._transition(state, token_set, generation, "token set"):
            return False

        if token_set.refresh_token:
            await self.persist_refresh_token(token_set.refresh_token, self._generation)
        return True

    async def persist_refresh_token(self, refresh_token: str, generation: int) -> None:
        """Best-effort write of the refresh token for the given generation."""
        if self._is_stale(generation, "refresh token write"):
            return
        try:
            await self._token_store.set(self._storage_key, refresh_token)
        except StorageFailure as e:
            self.report_storage_failure(e)

    def report_storage_failure(self, error: StorageFailure) -> None:
        """Log a storage failure and pass it to the observability hook."""
        logger.warning(f"Token storage {error.operation} failed: {error.message}")
        if self._on_storage_error is not None:
            try:
                self._on_storage_error(error)
            except Exception:
                logger.exception("Storage error hook failed")

    def apply_failure(
        self,
        error: BaseException,
        generation: Optional[int] = None,
        fatal: bool = False,
    ) -> bool:
        """
        Record a failure and drop the in-memory token.

        Args:
            error: The failure to expose in ``SessionState.error``.
            generation: Generation the failing work belonged to.
            fatal: Enter ERROR instead of UNAUTHENTICATED. Used for failures
                   outside the OAuth taxonomy; ERROR is left by a new login.

        Returns:
            False if the failure belonged to an older session generation.
        """
        phase = SessionPhase.ERROR if fatal else SessionPhase.UNAUTHENTICATED
        state = SessionState(phase=phase, error=ErrorInfo.from_exception(error))
        return self._transition(state, None, generation, "failure")

    def mark_unauthenticated(self, generation: Optional[int] = None) -> bool:
        """Enter UNAUTHENTICATED without recording an error."""
        state = SessionState(phase=SessionPhase.UNAUTHENTICATED)
        return self._transition(state, None, generation, "sign-out")

    def reset(self) -> int:
        """
        Clear all in-memory state and start a new session generation.

        Observers are notified only if there was anything to clear.

        Returns:
            The new generation.
        """
        cleared = SessionState(phase=SessionPhase.UNAUTHENTICATED)
        with self._lock:
            self._generation += 1
            if self._state != cleared or self._token_set is not None:
                self._transition(cleared, None, None, "reset")
            return self._generation
