"""
Silent token refresh for the OIDC session manager.

Concurrent callers that find the access token stale share one refresh: the
first caller starts it and later callers await the same task. Callers whose
token is still fresh never wait on it.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from ..utils.constants import SKEW_BUFFER_SECONDS
from ..utils.errors import (
    AuthError,
    MissingRefreshToken,
    StaleSessionError,
    StorageFailure,
    TokenExchangeFailure,
)
from .oauth_config import OAuthConfig
from .session_state import SessionStateMachine
from .token_store import TokenStore
from .tokens import TokenSet

logger = logging.getLogger(__name__)


def refresh_failure(error: GoogleAuthError) -> TokenExchangeFailure:
    """Convert a google-auth refresh error into a TokenExchangeFailure."""
    oauth_error = None
    response_data = error.args[1] if len(error.args) > 1 else None
    if isinstance(response_data, dict):
        oauth_error = response_data.get("error")
    return TokenExchangeFailure(f"Token refresh failed: {error.args[0] if error.args else error}", oauth_error=oauth_error)


class _RefreshFlight:
    """One shared refresh and what its callers asked for."""

    def __init__(self, generation: int, record_failure: bool) -> None:
        self.generation = generation
        self.record_failure = record_failure
        self.task: Optional[asyncio.Task] = None


class RefreshCoordinator:
    """Keeps the access token usable, refreshing at most once at a time."""

    def __init__(
        self,
        config: OAuthConfig,
        session: SessionStateMachine,
        token_store: TokenStore,
        skew_seconds: float = SKEW_BUFFER_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._config = config
        self._session = session
        self._token_store = token_store
        self._skew_seconds = skew_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._inflight: Optional[_RefreshFlight] = None

    @property
    def refresh_in_flight(self) -> bool:
        return self._inflight is not None

    async def get_access_token_silently(self) -> str:
        """
        Return a usable access token, refreshing it if needed.

        Raises:
            MissingRefreshToken: If no refresh token is stored.
            TokenExchangeFailure: If the issuer rejected the refresh. The
                session has ended; this is not a transient error.
            StaleSessionError: If the session was reset during the refresh.
        """
        token_set = self._session.token_set
        if token_set is not None and token_set.is_fresh(self._clock(), self._skew_seconds):
            return token_set.access_token
        return await self.refresh()

    async def refresh(self, record_failure: bool = True) -> str:
        """
        Start a refresh, or join the one already running.

        Args:
            record_failure: Keep the failure in the session state. A shared
                refresh keeps it if any of its callers asked to.
        """
        flight = self._inflight
        if flight is None or flight.generation != self._session.generation:
            flight = _RefreshFlight(self._session.generation, record_failure)
            flight.task = asyncio.ensure_future(self._refresh(flight))
            self._inflight = flight
        else:
            logger.debug("Joining in-flight refresh")
            flight.record_failure = flight.record_failure or record_failure
        # Shielded so one cancelled caller does not cancel the shared refresh
        return await asyncio.shield(flight.task)

    async def bootstrap(self) -> bool:
        """
        Restore the session from the persisted refresh token at startup.

        Failure is the normal first-run path and only leaves the session
        unauthenticated.

        Returns:
            True if a session was restored.
        """
        try:
            await self.refresh(record_failure=False)
            return True
        except AuthError as e:
            logger.info(f"No session restored at startup: {e.message}")
        except Exception as e:
            logger.error(f"Unexpected error restoring session: {e}")
        return False

    async def _read_refresh_token(self) -> Optional[str]:
        try:
            return await self._token_store.get(self._session.storage_key)
        except StorageFailure as e:
            self._session.report_storage_failure(e)
            return None

    def _exchange(self, refresh_token: str) -> TokenSet:
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self._config.token_endpoint,
            client_id=self._config.require_client_id(),
            client_secret=self._config.client_secret,
            scopes=self._config.scopes,
        )
        try:
            credentials.refresh(Request())
        except GoogleAuthError as e:
            raise refresh_failure(e) from e

        token_set = TokenSet.from_credentials(credentials)
        if token_set.refresh_token == refresh_token:
            # Not rotated; the stored token stays as it is
            token_set = TokenSet(
                access_token=token_set.access_token,
                expires_at=token_set.expires_at,
                id_token=token_set.id_token,
            )
        return token_set

    def _fail(self, error: Exception, flight: _RefreshFlight, fatal: bool = False) -> None:
        if flight.record_failure:
            self._session.apply_failure(error, flight.generation, fatal=fatal)
        else:
            self._session.mark_unauthenticated(flight.generation)

    async def _refresh(self, flight: _RefreshFlight) -> str:
        try:
            refresh_token = await self._read_refresh_token()
            if not refresh_token:
                raise MissingRefreshToken()

            logger.info("Refreshing access token")
            token_set = await asyncio.to_thread(self._exchange, refresh_token)
            if not await self._session.apply_token_set(token_set, flight.generation):
                raise StaleSessionError()
        except AuthError as e:
            self._fail(e, flight)
            raise
        except Exception as e:
            logger.error(f"Unexpected error refreshing access token: {e}", exc_info=True)
            self._fail(e, flight, fatal=True)
            raise
        finally:
            if self._inflight is flight:
                self._inflight = None

        logger.info("Access token refreshed")
        return token_set.access_token
