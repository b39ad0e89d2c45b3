"""PKCE (Proof Key for Code Exchange) generation per RFC 7636.

The verifier is 32 bytes drawn from the operating system CSPRNG, encoded as
base64url without padding, which always yields 43 characters. The challenge
uses the S256 method: BASE64URL(SHA256(verifier)).
"""

from __future__ import annotations

import base64
import hashlib
import re
import secrets
from dataclasses import dataclass, field

from pkceflow.models.errors import PKCEError

VERIFIER_ENTROPY_BYTES = 32

# RFC 7636 Section 4.1: unreserved characters, 43 to 128 of them
VERIFIER_PATTERN = re.compile(r"^[A-Za-z0-9._~-]{43,128}$")


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier() -> str:
    """Generate a cryptographically secure code verifier.

    Returns:
        A 43-character base64url string without padding
    """
    return _base64url(secrets.token_bytes(VERIFIER_ENTROPY_BYTES))


def generate_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge for a code verifier.

    Args:
        code_verifier: The code verifier to hash

    Returns:
        Base64url-encoded SHA256 hash of the UTF-8 bytes of the verifier
    """
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return _base64url(digest)


@dataclass(frozen=True)
class PKCEParameters:
    """Verifier and S256 challenge for one authorization attempt.

    The challenge must be the one derived from the verifier, so a pair that
    the token endpoint would reject can never be built.
    """

    code_verifier: str = field(repr=False)
    code_challenge: str
    code_challenge_method: str = "S256"

    def __post_init__(self) -> None:
        if not VERIFIER_PATTERN.match(self.code_verifier):
            raise ValueError(
                "code_verifier must be 43-128 unreserved characters (RFC 7636)"
            )
        if self.code_challenge_method != "S256":
            raise ValueError("Only the S256 code challenge method is supported")
        if self.code_challenge != generate_code_challenge(self.code_verifier):
            raise ValueError("code_challenge does not match code_verifier")

    @classmethod
    def from_verifier(cls, code_verifier: str) -> PKCEParameters:
        return cls(
            code_verifier=code_verifier,
            code_challenge=generate_code_challenge(code_verifier),
        )


class PKCEManager:
    """Generates fresh PKCE parameters for each authorization attempt."""

    def generate_parameters(self) -> PKCEParameters:
        """Generate new PKCE parameters for an authorization flow.

        Returns:
            PKCEParameters: Immutable parameters for the authorization flow

        Raises:
            PKCEError: If parameter generation fails
        """
        try:
            return PKCEParameters.from_verifier(generate_code_verifier())
        except Exception as e:
            raise PKCEError(f"Failed to generate PKCE parameters: {e}") from e
