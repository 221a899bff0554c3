"""
OAuth2/OIDC Session Package.

This package provides the session and token lifecycle for one signed-in user:
- Authorization-code login with PKCE
- Silent access-token refresh with single-flight semantics
- Refresh-token persistence that survives restarts
- Logout at the issuer and locally
"""

from .auth_session import AuthSession
from .authorization_flow import AuthorizationFlowCoordinator, AuthorizationRequest, RequestOptions
from .browser import (
    BrowserLauncher,
    BrowserResult,
    BrowserResultType,
    LoopbackBrowserLauncher,
    PresentationOptions,
)
from .logout import LogoutCoordinator
from .oauth_config import OAuthConfig, get_oauth_config, reload_oauth_config
from .pkce import PkcePair
from .refresh import RefreshCoordinator
from .scopes import DEFAULT_SCOPE, parse_scopes
from .session_state import SessionPhase, SessionState, SessionStateMachine
from .token_store import LocalFileTokenStore, MemoryTokenStore, TokenStore
from .tokens import IdentityTokenDecoder, TokenSet, UnverifiedJwtDecoder, UserClaims

__all__ = [
    # Session
    "AuthSession",
    "SessionPhase",
    "SessionState",
    "SessionStateMachine",
    # Flows
    "AuthorizationFlowCoordinator",
    "AuthorizationRequest",
    "RequestOptions",
    "RefreshCoordinator",
    "LogoutCoordinator",
    "PkcePair",
    # Capabilities
    "BrowserLauncher",
    "BrowserResult",
    "BrowserResultType",
    "LoopbackBrowserLauncher",
    "PresentationOptions",
    "TokenStore",
    "LocalFileTokenStore",
    "MemoryTokenStore",
    "IdentityTokenDecoder",
    "UnverifiedJwtDecoder",
    # Data
    "TokenSet",
    "UserClaims",
    # Configuration
    "OAuthConfig",
    "get_oauth_config",
    "reload_oauth_config",
    "DEFAULT_SCOPE",
    "parse_scopes",
]
