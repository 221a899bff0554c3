"""
OAuth Configuration Management for the OIDC session manager.

This module centralizes issuer, client and redirect configuration. Values
passed to OAuthConfig take precedence; anything omitted comes from the
environment (and a .env file, when present).
"""

import os
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlencode

from dotenv import load_dotenv

from ..utils.constants import (
    AUTHORIZE_PATH,
    CALLBACK_PATH,
    DEFAULT_BASE_URI,
    DEFAULT_BROWSER_TIMEOUT_SECONDS,
    DEFAULT_PORT,
    LOGOUT_PATH,
    TOKEN_PATH,
)
from ..utils.errors import ConfigurationError
from .scopes import DEFAULT_SCOPE, parse_scopes

load_dotenv()


def parse_extra_params(raw: Optional[str]) -> Dict[str, str]:
    """
    Parse ``key=value`` pairs separated by commas.

    Raises:
        ConfigurationError: If a pair has no ``=``.
    """
    params: Dict[str, str] = {}
    if not raw:
        return params
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(f"Invalid extra parameter '{pair}', expected key=value")
        params[key.strip()] = value.strip()
    return params


class OAuthConfig:
    """
    Centralized OAuth configuration management.

    Provides a single source of truth for the issuer endpoints, client
    identity, requested scopes and authorization parameters.
    """

    def __init__(
        self,
        domain: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        scope: Optional[str] = None,
        audience: Optional[str] = None,
        nonce: Optional[str] = None,
        extra_params: Optional[Mapping[str, str]] = None,
        credentials_dir: Optional[str] = None,
    ) -> None:
        # Issuer and client
        self.domain = domain or os.getenv("OIDC_SESSION_DOMAIN")
        self.client_id = client_id or os.getenv("OIDC_SESSION_CLIENT_ID")
        # Public (PKCE) clients have no secret
        self.client_secret = (
            client_secret
            if client_secret is not None
            else os.getenv("OIDC_SESSION_CLIENT_SECRET", "")
        )

        # Loopback server configuration
        self.base_uri = os.getenv("OIDC_SESSION_BASE_URI", DEFAULT_BASE_URI)
        self.port = int(os.getenv("OIDC_SESSION_PORT", str(DEFAULT_PORT)))
        self.base_url = f"{self.base_uri}:{self.port}"
        self.redirect_uri = (
            redirect_uri
            or os.getenv("OIDC_SESSION_REDIRECT_URI")
            or f"{self.base_url}{CALLBACK_PATH}"
        )

        self.scope = scope or os.getenv("OIDC_SESSION_SCOPE", DEFAULT_SCOPE)
        self.audience = audience or os.getenv("OIDC_SESSION_AUDIENCE")
        self.nonce = nonce or os.getenv("OIDC_SESSION_NONCE")
        self.extra_params = (
            dict(extra_params)
            if extra_params is not None
            else parse_extra_params(os.getenv("OIDC_SESSION_EXTRA_PARAMS"))
        )

        self.credentials_dir = os.path.expanduser(
            credentials_dir or os.getenv("OIDC_SESSION_CREDENTIALS_DIR", "~/.oidc-session")
        )
        self.browser_timeout = float(
            os.getenv("OIDC_SESSION_BROWSER_TIMEOUT", str(DEFAULT_BROWSER_TIMEOUT_SECONDS))
        )

    @property
    def scopes(self) -> List[str]:
        return parse_scopes(self.scope)

    @property
    def issuer_url(self) -> str:
        """Issuer origin; a bare domain is assumed to be served over https."""
        if not self.domain:
            raise ConfigurationError("Issuer domain is not configured (OIDC_SESSION_DOMAIN)")
        domain = self.domain.rstrip("/")
        if domain.startswith(("http://", "https://")):
            return domain
        return f"https://{domain}"

    @property
    def authorization_endpoint(self) -> str:
        return f"{self.issuer_url}{AUTHORIZE_PATH}"

    @property
    def token_endpoint(self) -> str:
        return f"{self.issuer_url}{TOKEN_PATH}"

    @property
    def logout_endpoint(self) -> str:
        return f"{self.issuer_url}{LOGOUT_PATH}"

    def get_logout_url(self) -> str:
        """Remote logout URL returning the browser to the redirect URI."""
        query = urlencode({"client_id": self.require_client_id(), "returnTo": self.redirect_uri})
        return f"{self.logout_endpoint}?{query}"

    def get_authorization_params(self) -> Dict[str, str]:
        """Extra parameters sent verbatim to the authorization endpoint."""
        params = dict(self.extra_params)
        if self.audience:
            params["audience"] = self.audience
        if self.nonce:
            params["nonce"] = self.nonce
        return params

    def require_client_id(self) -> str:
        if not self.client_id:
            raise ConfigurationError("Client id is not configured (OIDC_SESSION_CLIENT_ID)")
        return self.client_id

    def get_client_config(self) -> Dict[str, Any]:
        """Client configuration in the shape google-auth-oauthlib expects."""
        return {
            "installed": {
                "client_id": self.require_client_id(),
                "client_secret": self.client_secret,
                "auth_uri": self.authorization_endpoint,
                "token_uri": self.token_endpoint,
                "redirect_uris": [self.redirect_uri],
            }
        }

    def is_configured(self) -> bool:
        """Check if the issuer and client are configured."""
        return bool(self.domain and self.client_id)

    def get_environment_summary(self) -> Dict[str, Any]:
        """Get a summary of the current OAuth configuration (excluding secrets)."""
        return {
            "domain": self.domain,
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scopes": self.scopes,
            "audience": self.audience,
            "extra_params": sorted(self.extra_params),
            "credentials_dir": self.credentials_dir,
            "client_configured": self.is_configured(),
            "confidential_client": bool(self.client_secret),
        }


# Global configuration instance
_oauth_config: Optional[OAuthConfig] = None


def get_oauth_config() -> OAuthConfig:
    """Get the global OAuth configuration instance."""
    global _oauth_config
    if _oauth_config is None:
        _oauth_config = OAuthConfig()
    return _oauth_config


def reload_oauth_config() -> OAuthConfig:
    """Reload the OAuth configuration from environment variables."""
    global _oauth_config
    _oauth_config = OAuthConfig()
    return _oauth_config
