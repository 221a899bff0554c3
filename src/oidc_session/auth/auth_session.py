"""
The authenticated session exposed to the rest of an application.

AuthSession wires the state machine, the three flow coordinators and their
capabilities together. One instance is owned per process and passed by
reference to whatever needs it.
"""

import logging
from typing import Callable, Optional

from ..utils.constants import SKEW_BUFFER_SECONDS
from .authorization_flow import AuthorizationFlowCoordinator, RequestOptions
from .browser import BrowserLauncher, LoopbackBrowserLauncher, PresentationOptions
from .logout import LogoutCoordinator
from .oauth_config import OAuthConfig, get_oauth_config
from .refresh import RefreshCoordinator
from .scopes import requests_refresh_token
from .session_state import SessionState, SessionStateMachine, StateListener, StorageErrorHook
from .token_store import LocalFileTokenStore, TokenStore
from .tokens import IdentityTokenDecoder, UserClaims

logger = logging.getLogger(__name__)


class AuthSession:
    """Single OAuth2/OIDC session: login, silent refresh and logout."""

    def __init__(
        self,
        config: Optional[OAuthConfig] = None,
        token_store: Optional[TokenStore] = None,
        browser: Optional[BrowserLauncher] = None,
        decoder: Optional[IdentityTokenDecoder] = None,
        on_storage_error: Optional[StorageErrorHook] = None,
        skew_seconds: float = SKEW_BUFFER_SECONDS,
    ) -> None:
        self.config = config or get_oauth_config()
        self.token_store = token_store or LocalFileTokenStore(self.config.credentials_dir)
        self.browser = browser or LoopbackBrowserLauncher(self.config.redirect_uri)

        self.session = SessionStateMachine(
            self.token_store, decoder=decoder, on_storage_error=on_storage_error
        )
        self.authorization = AuthorizationFlowCoordinator(self.config, self.session, self.browser)
        self.refresher = RefreshCoordinator(
            self.config, self.session, self.token_store, skew_seconds=skew_seconds
        )
        self.logout_coordinator = LogoutCoordinator(
            self.config, self.session, self.token_store, self.browser
        )
        requests_refresh_token(self.config.scopes)

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def user(self) -> Optional[UserClaims]:
        return self.session.state.user

    @property
    def is_authenticated(self) -> bool:
        return self.session.state.is_authenticated

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call listener with every new session state. Returns an unsubscribe callable."""
        return self.session.subscribe(listener)

    async def start(self) -> SessionState:
        """Restore a previous session from the stored refresh token, if any."""
        await self.refresher.bootstrap()
        return self.state

    async def login(
        self,
        presentation: Optional[PresentationOptions] = None,
        request_options: Optional[RequestOptions] = None,
    ) -> SessionState:
        return await self.authorization.login(presentation, request_options)

    async def get_access_token_silently(self) -> str:
        return await self.refresher.get_access_token_silently()

    async def logout(self, presentation: Optional[PresentationOptions] = None) -> None:
        await self.logout_coordinator.logout(presentation)
