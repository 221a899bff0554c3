"""MCP Server initialization and the process-wide session."""

from typing import Optional

from fastmcp import FastMCP

from ..auth import AuthSession

# Initialize MCP Server
mcp = FastMCP("OIDC Session")

# Global session, initialized lazily
_session: Optional[AuthSession] = None


def get_session() -> AuthSession:
    """Get or create the process-wide AuthSession.

    Returns:
        The AuthSession built from the environment configuration.
    """
    global _session
    if _session is None:
        _session = AuthSession()
    return _session


def set_session(session: Optional[AuthSession]) -> None:
    """Replace the process-wide AuthSession."""
    global _session
    _session = session
