"""OIDC Session MCP Server."""

import asyncio
import logging

from .main import mcp, get_session, set_session

from . import auth_tools

__all__ = ["mcp", "get_session", "set_session", "main"]

logger = logging.getLogger(__name__)


def main():
    """Entry point for the OIDC Session MCP server."""
    state = asyncio.run(get_session().start())
    logger.info(f"Session restored at startup: {state.phase.value}")
    mcp.run(show_banner=False)
