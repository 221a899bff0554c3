"""
OAuth Scopes for the OIDC session manager.

Scopes are configured as a single comma-delimited string and sent to the
issuer space-delimited.
"""

import logging
from typing import Iterable, List

logger = logging.getLogger(__name__)

OFFLINE_ACCESS_SCOPE = "offline_access"
OPENID_SCOPE = "openid"
PROFILE_SCOPE = "profile"
EMAIL_SCOPE = "email"

DEFAULT_SCOPES = [OFFLINE_ACCESS_SCOPE, OPENID_SCOPE, PROFILE_SCOPE, EMAIL_SCOPE]
DEFAULT_SCOPE = ",".join(DEFAULT_SCOPES)


def parse_scopes(scope: str) -> List[str]:
    """
    Split a comma-delimited scope string.

    Args:
        scope: Scope string such as ``"offline_access,openid,profile"``.

    Returns:
        List of unique scopes in their original order.
    """
    scopes = [s.strip() for s in scope.split(",") if s.strip()]
    return list(dict.fromkeys(scopes))


def requests_refresh_token(scopes: Iterable[str]) -> bool:
    """Check whether the issuer will hand out a refresh token for these scopes."""
    granted = OFFLINE_ACCESS_SCOPE in scopes
    if not granted:
        logger.warning(
            "Scope '%s' not requested; the session will not survive a restart",
            OFFLINE_ACCESS_SCOPE,
        )
    return granted
