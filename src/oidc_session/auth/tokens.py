"""
Token and claim types for the OIDC session manager.

A TokenSet is produced by either the authorization-code exchange or the
refresh-token exchange and is applied to the session as a whole. Identity
tokens are decoded into UserClaims without signature verification; the
issuer is trusted over TLS.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from google.auth import jwt

from ..utils.constants import DEFAULT_TOKEN_LIFETIME_SECONDS, SKEW_BUFFER_SECONDS
from ..utils.errors import DecodeFailure

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_aware_utc(value: datetime) -> datetime:
    """google-auth reports naive UTC datetimes; make them explicit."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _from_timestamp(value: float) -> Optional[datetime]:
    """Convert an epoch timestamp, or None if the platform cannot represent it."""
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _expiry_from_access_token(access_token: str) -> Optional[datetime]:
    """Read the ``exp`` claim of a JWT access token, if it is one."""
    try:
        payload = jwt.decode(access_token, verify=False)
    except ValueError:
        return None
    exp = payload.get("exp")
    if isinstance(exp, (int, float)):
        return _from_timestamp(exp)
    return None


@dataclass(frozen=True)
class TokenSet:
    """Result of a successful token exchange."""

    access_token: str
    expires_at: datetime
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None

    def is_fresh(
        self,
        now: Optional[datetime] = None,
        skew_seconds: float = SKEW_BUFFER_SECONDS,
    ) -> bool:
        """Check whether the access token is usable for at least ``skew_seconds`` more."""
        now = now or _utcnow()
        return now < self.expires_at - timedelta(seconds=skew_seconds)

    @classmethod
    def from_token_response(
        cls, response: Mapping[str, Any], now: Optional[datetime] = None
    ) -> "TokenSet":
        """
        Build a TokenSet from a token endpoint response.

        Expiry is taken from ``expires_at`` (added by requests-oauthlib),
        then ``expires_in``, then the access token's own ``exp`` claim.

        Raises:
            KeyError: If the response has no access token.
            OverflowError: If ``expires_in`` is out of range.
        """
        access_token = response["access_token"]
        now = now or _utcnow()

        expires_at: Optional[datetime] = None
        if response.get("expires_at") is not None:
            expires_at = _from_timestamp(float(response["expires_at"]))
        elif response.get("expires_in") is not None:
            expires_at = now + timedelta(seconds=int(response["expires_in"]))
        else:
            expires_at = _expiry_from_access_token(access_token)

        if expires_at is None:
            logger.debug("Token response carries no expiry, assuming default lifetime")
            expires_at = now + timedelta(seconds=DEFAULT_TOKEN_LIFETIME_SECONDS)

        return cls(
            access_token=access_token,
            expires_at=expires_at,
            id_token=response.get("id_token") or None,
            refresh_token=response.get("refresh_token") or None,
        )

    @classmethod
    def from_credentials(cls, credentials: Any, now: Optional[datetime] = None) -> "TokenSet":
        """Build a TokenSet from refreshed ``google.oauth2.credentials.Credentials``."""
        expiry = getattr(credentials, "expiry", None)
        if expiry is not None:
            expires_at = _to_aware_utc(expiry)
        else:
            expires_at = _expiry_from_access_token(credentials.token) or (
                (now or _utcnow()) + timedelta(seconds=DEFAULT_TOKEN_LIFETIME_SECONDS)
            )
        return cls(
            access_token=credentials.token,
            expires_at=expires_at,
            id_token=getattr(credentials, "id_token", None) or None,
            refresh_token=getattr(credentials, "refresh_token", None) or None,
        )


@dataclass(frozen=True)
class UserClaims:
    """Decoded identity token payload. Immutable once built."""

    subject: str
    name: Optional[str] = None
    nickname: Optional[str] = None
    email: Optional[str] = None
    email_verified: Optional[bool] = None
    picture: Optional[str] = None
    updated_at: Optional[str] = None
    expires_at: Optional[datetime] = None
    claims: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "UserClaims":
        """
        Build UserClaims from a decoded payload.

        Raises:
            DecodeFailure: If the payload has no subject or an unusable expiry.
        """
        subject = claims.get("sub")
        if not subject:
            raise DecodeFailure("Identity token has no subject claim")

        exp = claims.get("exp")
        expires_at = None
        if isinstance(exp, (int, float)):
            expires_at = _from_timestamp(exp)
            if expires_at is None:
                raise DecodeFailure(f"Identity token expiry is out of range: {exp}")
        return cls(
            subject=str(subject),
            name=claims.get("name"),
            nickname=claims.get("nickname"),
            email=claims.get("email"),
            email_verified=claims.get("email_verified"),
            picture=claims.get("picture"),
            updated_at=claims.get("updated_at"),
            expires_at=expires_at,
            claims=MappingProxyType(dict(claims)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.claims)


class IdentityTokenDecoder(ABC):
    """Abstract decoder turning an identity token into claims."""

    @abstractmethod
    def decode(self, token: str) -> Mapping[str, Any]:
        """
        Decode a token into its claims.

        Raises:
            DecodeFailure: If the token is malformed.
        """
        pass


class UnverifiedJwtDecoder(IdentityTokenDecoder):
    """Decodes JWT payloads with google-auth, skipping signature verification."""

    def decode(self, token: str) -> Mapping[str, Any]:
        try:
            payload = jwt.decode(token, verify=False)
        except ValueError as e:
            raise DecodeFailure(f"Malformed identity token: {e}") from e
        if not isinstance(payload, Mapping):
            raise DecodeFailure("Identity token payload is not an object")
        return payload
