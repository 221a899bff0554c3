"""Logout for the OIDC session manager."""

import logging
from typing import Optional

from ..utils.errors import StorageFailure
from .browser import BrowserLauncher, PresentationOptions
from .oauth_config import OAuthConfig
from .session_state import SessionStateMachine
from .token_store import TokenStore

logger = logging.getLogger(__name__)

LOGOUT_TIMEOUT_SECONDS = 30.0


class LogoutCoordinator:
    """
    Tears the session down locally, then at the issuer.

    The in-memory session is reset and the refresh token forgotten before
    the remote logout is awaited, so nothing started during the browser
    round-trip can restore the session.
    """

    def __init__(
        self,
        config: OAuthConfig,
        session: SessionStateMachine,
        token_store: TokenStore,
        browser: BrowserLauncher,
    ) -> None:
        self._config = config
        self._session = session
        self._token_store = token_store
        self._browser = browser

    async def logout(self, presentation: Optional[PresentationOptions] = None) -> None:
        """Sign out. Never raises; remote and storage failures are logged."""
        self._session.reset()
        try:
            await self._forget_refresh_token()
        finally:
            # A refresh started while the token was being removed may have read it
            self._session.reset()
        logger.info("Logged out locally")

        await self._remote_logout(
            presentation or PresentationOptions(timeout_seconds=LOGOUT_TIMEOUT_SECONDS)
        )

    async def _remote_logout(self, presentation: PresentationOptions) -> None:
        try:
            result = await self._browser.open(self._config.get_logout_url(), presentation)
            logger.debug("Remote logout finished: %s", result.type.value)
        except Exception as e:
            logger.warning(f"Remote logout failed: {e}")

    async def _forget_refresh_token(self) -> None:
        key = self._session.storage_key
        try:
            await self._token_store.delete(key)
            return
        except Exception as e:
            self._session.report_storage_failure(_as_storage_failure(e, "delete"))

        # An empty value reads back as no refresh token
        try:
            await self._token_store.set(key, "")
        except Exception as e:
            self._session.report_storage_failure(_as_storage_failure(e, "set"))


def _as_storage_failure(error: Exception, operation: str) -> StorageFailure:
    if isinstance(error, StorageFailure):
        return error
    return StorageFailure(f"Could not {operation} refresh token: {error}", operation)
