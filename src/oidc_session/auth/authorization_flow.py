"""
Authorization-code login for the OIDC session manager.

Builds a PKCE-protected authorization request, hands the URL to the browser
capability and exchanges the returned code at the token endpoint.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import requests
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from ..utils.constants import DEFAULT_AUTH_ERROR_MESSAGE
from ..utils.errors import AuthError, AuthorizationDenied, ConfigurationError, TokenExchangeFailure
from .browser import BrowserLauncher, BrowserResult, BrowserResultType, PresentationOptions
from .oauth_config import OAuthConfig
from .pkce import PkcePair
from .session_state import SessionState, SessionStateMachine
from .tokens import TokenSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestOptions:
    """Per-login parameters sent to the issuer.

    Attributes:
        authorization_params: Added to the authorization request, over the
            configured extra parameters (e.g. ``prompt``, ``login_hint``).
        token_params: Added to the code exchange at the token endpoint.
    """

    authorization_params: Mapping[str, str] = field(default_factory=dict)
    token_params: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthorizationRequest:
    """One login attempt. The PKCE pair is never reused across attempts."""

    client_id: str
    redirect_uri: str
    scopes: Tuple[str, ...]
    pkce: PkcePair
    state: str
    extra_params: Mapping[str, str] = field(default_factory=dict)

    @property
    def pkce_verifier(self) -> str:
        return self.pkce.verifier

    @property
    def pkce_challenge(self) -> str:
        return self.pkce.challenge


def _allow_local_transport(*urls: str) -> None:
    """Let oauthlib talk plain HTTP to a local issuer or redirect target."""
    if "OAUTHLIB_INSECURE_TRANSPORT" in os.environ:
        return
    if any(url.startswith("http://") for url in urls):
        os.environ["OAUTHLIB_INSECURE_TRANSPORT"] = "1"


def create_oauth_flow(config: OAuthConfig, request: AuthorizationRequest) -> Flow:
    """
    Create an OAuth flow bound to one authorization request.

    Args:
        config: Issuer and client configuration
        request: The attempt's scopes, redirect URI, state and PKCE pair

    Returns:
        Configured OAuth Flow object
    """
    _allow_local_transport(config.token_endpoint, request.redirect_uri)
    # Issuers may echo a narrower scope than requested
    os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

    flow = Flow.from_client_config(
        config.get_client_config(),
        scopes=list(request.scopes),
        redirect_uri=request.redirect_uri,
        state=request.state,
        code_verifier=request.pkce.verifier,
        autogenerate_code_verifier=False,
    )
    logger.debug("Created OAuth flow with PKCE challenge %s...", request.pkce.challenge[:8])
    return flow


def exchange_failure(error: Exception) -> TokenExchangeFailure:
    """Convert an oauthlib/requests error into a TokenExchangeFailure."""
    if isinstance(error, OAuth2Error):
        return TokenExchangeFailure(
            f"Token endpoint rejected the request: {error.description or error.error}",
            status_code=error.status_code,
            oauth_error=error.error,
        )
    if isinstance(error, requests.HTTPError) and error.response is not None:
        return TokenExchangeFailure(
            f"Token endpoint returned an error: {error}",
            status_code=error.response.status_code,
        )
    return TokenExchangeFailure(f"Token exchange failed: {error}")


class AuthorizationFlowCoordinator:
    """Drives one login attempt from authorization request to token set."""

    def __init__(
        self,
        config: OAuthConfig,
        session: SessionStateMachine,
        browser: BrowserLauncher,
    ) -> None:
        self._config = config
        self._session = session
        self._browser = browser

    def build_authorization_request(
        self, options: Optional[RequestOptions] = None
    ) -> AuthorizationRequest:
        """Build a request with a freshly generated PKCE pair and state."""
        options = options or RequestOptions()
        extra_params = self._config.get_authorization_params()
        extra_params.update(options.authorization_params)
        return AuthorizationRequest(
            client_id=self._config.require_client_id(),
            redirect_uri=self._config.redirect_uri,
            scopes=tuple(self._config.scopes),
            pkce=PkcePair.generate(),
            state=os.urandom(16).hex(),
            extra_params=extra_params,
        )

    def authorization_url(self, request: AuthorizationRequest) -> Tuple[str, Flow]:
        """
        Render the authorization URL for a request.

        Returns:
            Tuple of (url, flow); the flow performs the matching code exchange.
        """
        flow = create_oauth_flow(self._config, request)
        url, _ = flow.authorization_url(
            code_challenge=request.pkce.challenge,
            code_challenge_method=request.pkce.method,
            # google-auth-oauthlib adds access_type=offline unless told otherwise
            access_type=None,
            **request.extra_params,
        )
        return url, flow

    def _fetch_token(
        self, flow: Flow, code: str, request: AuthorizationRequest, token_params: Mapping[str, str]
    ) -> Dict[str, Any]:
        try:
            return flow.fetch_token(
                code=code,
                code_verifier=request.pkce.verifier,
                include_client_id=not self._config.client_secret,
                **token_params,
            )
        except (OAuth2Error, requests.RequestException, ValueError, Warning) as e:
            raise exchange_failure(e) from e

    async def exchange_code(
        self,
        flow: Flow,
        code: str,
        request: AuthorizationRequest,
        token_params: Optional[Mapping[str, str]] = None,
    ) -> TokenSet:
        """
        Exchange an authorization code and PKCE verifier for a token set.

        Raises:
            TokenExchangeFailure: If the token endpoint rejects the exchange.
        """
        response = await asyncio.to_thread(
            self._fetch_token, flow, code, request, token_params or {}
        )
        try:
            token_set = TokenSet.from_token_response(response)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise TokenExchangeFailure(f"Malformed token response: {e}") from e
        logger.info("Exchanged authorization code for tokens")
        return token_set

    async def login(
        self,
        presentation: Optional[PresentationOptions] = None,
        request_options: Optional[RequestOptions] = None,
    ) -> SessionState:
        """
        Run one interactive login.

        Cancelling or dismissing the browser is not a failure: the session
        returns to unauthenticated without an error.

        Returns:
            The session state after the attempt.

        Raises:
            AuthorizationDenied: If the issuer returned an error.
            TokenExchangeFailure: If the code exchange failed.
            ConfigurationError: If the issuer or client is not configured.
        """
        presentation = presentation or PresentationOptions(
            timeout_seconds=self._config.browser_timeout
        )
        request_options = request_options or RequestOptions()
        generation = self._session.begin_loading()

        try:
            request = self.build_authorization_request(request_options)
            url, flow = self.authorization_url(request)
        except ConfigurationError as e:
            self._session.apply_failure(e, generation)
            raise

        logger.info("Starting login, state %s...", request.state[:8])
        try:
            result = await self._browser.open(url, presentation)
        except Exception as e:
            logger.error(f"Browser launch failed: {e}", exc_info=True)
            error = AuthError(f"Could not open the browser: {e}", code="browser_failure")
            self._session.apply_failure(error, generation, fatal=True)
            raise error from e

        if result.is_abandoned:
            logger.info("Login %s by user", result.type.value)
            self._session.mark_unauthenticated(generation)
            return self._session.state

        try:
            token_set = await self._complete(result, request, flow, request_options)
            await self._session.apply_token_set(token_set, generation)
        except AuthError as e:
            logger.warning(f"Login failed: {e}")
            self._session.apply_failure(e, generation)
            raise
        except Exception as e:
            logger.error(f"Unexpected error completing login: {e}", exc_info=True)
            self._session.apply_failure(e, generation, fatal=True)
            raise
        return self._session.state

    async def _complete(
        self,
        result: BrowserResult,
        request: AuthorizationRequest,
        flow: Flow,
        request_options: RequestOptions,
    ) -> TokenSet:
        if result.type is BrowserResultType.ERROR:
            raise AuthorizationDenied(result.error_description or DEFAULT_AUTH_ERROR_MESSAGE)

        returned_state = result.params.get("state")
        if returned_state is not None and returned_state != request.state:
            raise AuthorizationDenied("Authorization state mismatch")
        if not result.code:
            raise AuthorizationDenied("No authorization code received")

        return await self.exchange_code(flow, result.code, request, request_options.token_params)
