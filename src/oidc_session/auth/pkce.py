"""PKCE (RFC 7636) verifier and challenge generation."""

import base64
import hashlib
import os
from dataclasses import dataclass

from ..utils.constants import CODE_CHALLENGE_METHOD


def generate_code_verifier(length: int = 64) -> str:
    """
    Generate a PKCE code verifier.

    Args:
        length: Number of random bytes (32 to 96 keeps the verifier within
                the 43-128 characters RFC 7636 allows).

    Returns:
        URL-safe base64 code verifier without padding.
    """
    if not 32 <= length <= 96:
        raise ValueError("length must be between 32 and 96 bytes")
    return base64.urlsafe_b64encode(os.urandom(length)).rstrip(b"=").decode("ascii")


def generate_code_challenge(verifier: str) -> str:
    """Derive the S256 code challenge for a verifier."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class PkcePair:
    """A verifier and its derived challenge. Valid for one login attempt."""

    verifier: str
    challenge: str
    method: str = CODE_CHALLENGE_METHOD

    @classmethod
    def generate(cls) -> "PkcePair":
        verifier = generate_code_verifier()
        return cls(verifier=verifier, challenge=generate_code_challenge(verifier))
