"""Session MCP tools."""

import logging
from typing import Optional

from .main import mcp, get_session
from ..auth import RequestOptions, SessionPhase
from ..utils.errors import AuthError, format_error

logger = logging.getLogger(__name__)


@mcp.tool()
async def login(prompt: Optional[str] = None, login_hint: Optional[str] = None) -> str:
    """
    Sign in through the system browser.

    Opens the issuer's login page and waits for the redirect. Closing the
    browser or waiting too long abandons the attempt without an error.

    Args:
        prompt: Optional OIDC prompt value (e.g. "login" to force re-entry of credentials)
        login_hint: Optional username or email to prefill

    Returns:
        Outcome of the login attempt.
    """
    session = get_session()
    if not session.config.is_configured():
        return "**Error:** Set OIDC_SESSION_DOMAIN and OIDC_SESSION_CLIENT_ID to enable login."

    params = {k: v for k, v in (("prompt", prompt), ("login_hint", login_hint)) if v}
    try:
        state = await session.login(request_options=RequestOptions(authorization_params=params))
    except AuthError as e:
        return format_error("Login", e)

    if state.phase is SessionPhase.AUTHENTICATED:
        user = state.user
        who = (user.name or user.email or user.subject) if user else "unknown user"
        return f"Signed in as {who}."
    return "Login was cancelled."


@mcp.tool()
async def get_access_token() -> str:
    """
    Get a usable access token, refreshing it silently when it is about to expire.

    Returns:
        The access token, or why none is available. A refresh failure means
        the session has ended and login is needed again.
    """
    try:
        return await get_session().get_access_token_silently()
    except AuthError as e:
        return format_error("Token refresh", e)


@mcp.tool()
def session_status() -> str:
    """
    Describe the current session.

    Returns:
        Phase, signed-in user and last error, one per line.
    """
    state = get_session().state
    lines = [f"Phase: {state.phase.value}"]
    if state.user:
        lines.append(f"User: {state.user.name or state.user.subject}")
        if state.user.email:
            lines.append(f"Email: {state.user.email}")
    if state.error:
        lines.append(f"Error: {state.error.message}")
    return "\n".join(lines)


@mcp.tool()
async def logout() -> str:
    """
    Sign out locally and at the issuer.

    Returns:
        Confirmation message.
    """
    await get_session().logout()
    return "Signed out."
