"""OIDC Session - OAuth2/OIDC session and token lifecycle manager.

This package tracks whether a user is signed in, drives the authorization-code
(+PKCE) login, keeps the access token usable through silent refresh and tears
the session down on logout.
"""
from .auth import AuthSession, OAuthConfig, SessionPhase, SessionState
from .utils.errors import AuthError

__version__ = "0.1.0"
__all__ = ["AuthSession", "OAuthConfig", "SessionPhase", "SessionState", "AuthError"]
