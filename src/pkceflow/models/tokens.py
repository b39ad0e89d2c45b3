"""Token models for the authorization code flow.

Contains the immutable access token value persisted by the session, the
token endpoint response model and the form-encoded grant requests.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pkceflow.models.provider import ProviderConfig


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccessToken(BaseModel):
    """An issued access token, optionally paired with a refresh token.

    Immutable: a refresh produces a new ``AccessToken`` instead of mutating
    this one. Serialized with camelCase keys
    (``token, refreshToken, scope, type, expiresIn, issuedAt``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    token: str = Field(repr=False)
    refresh_token: str | None = Field(default=None, alias="refreshToken", repr=False)
    scope: str | None = None
    token_type: str | None = Field(default=None, alias="type")
    expires_in: int | None = Field(default=None, alias="expiresIn")
    issued_at: datetime = Field(alias="issuedAt")

    @field_validator("issued_at")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Naive timestamps are taken to be UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def expires_at(self) -> datetime | None:
        """When the token expires, or None if the server gave no lifetime."""
        if self.expires_in is None:
            return None
        return self.issued_at + timedelta(seconds=self.expires_in)

    def can_refresh(self) -> bool:
        """Check if token can be refreshed."""
        return bool(self.refresh_token)

    def is_expired(
        self, leeway_seconds: float = 30.0, now: datetime | None = None
    ) -> bool:
        """Check if the token is expired, or will be within the leeway.

        Tokens without a known lifetime never expire.
        """
        expires_at = self.expires_at
        if expires_at is None:
            return False
        now = now or utcnow()
        return now >= expires_at - timedelta(seconds=leeway_seconds)

    def authorization_header(self) -> str:
        """Value for an HTTP ``Authorization`` header."""
        return f"{self.token_type or 'Bearer'} {self.token}"

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_json_bytes(cls, data: bytes) -> AccessToken:
        """Decode a persisted token.

        Raises:
            pydantic.ValidationError: If the data is not a valid token
        """
        return cls.model_validate_json(data)


class TokenResponse(BaseModel):
    """OAuth 2.0 token response (RFC 6749 Section 5).

    Represents the response from a token endpoint, including both
    successful responses (Section 5.1) and error responses (Section 5.2).
    """

    # Success response fields (RFC 6749 Section 5.1)
    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None

    # Error response fields (RFC 6749 Section 5.2)
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        """Check if token response indicates success."""
        return self.error is None and self.access_token is not None

    def is_error(self) -> bool:
        """Check if token response indicates an error."""
        return self.error is not None

    def to_access_token(
        self, issued_at: datetime, fallback_refresh_token: str | None = None
    ) -> AccessToken:
        """Convert a successful response to an AccessToken.

        Args:
            issued_at: Moment the response was received
            fallback_refresh_token: Refresh token to keep when the server
                does not rotate it

        Raises:
            ValueError: If response is not successful
        """
        if not self.is_success():
            raise ValueError("Cannot convert error response to AccessToken")

        return AccessToken(
            token=self.access_token,
            refresh_token=self.refresh_token or fallback_refresh_token,
            scope=self.scope,
            token_type=self.token_type,
            expires_in=self.expires_in,
            issued_at=issued_at,
        )


@dataclass(frozen=True)
class TokenRequest:
    """Authorization code grant parameters (RFC 6749 Section 4.1.3).

    Includes the PKCE code_verifier (RFC 7636).
    """

    token_endpoint: str
    code: str
    redirect_uri: str
    client_id: str
    code_verifier: str
    grant_type: str = "authorization_code"

    @classmethod
    def for_provider(
        cls, provider: ProviderConfig, code: str, code_verifier: str
    ) -> TokenRequest:
        return cls(
            token_endpoint=provider.token_url,
            code=code,
            redirect_uri=provider.redirect_uri,
            client_id=provider.client_id,
            code_verifier=code_verifier,
        )

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request.

        Token requests must use form encoding, not JSON (RFC 6749 Section 4.1.3).
        """
        return {
            "code": self.code,
            "code_verifier": self.code_verifier,
            "grant_type": self.grant_type,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
        }


@dataclass(frozen=True)
class RefreshTokenRequest:
    """Refresh token grant parameters (RFC 6749 Section 6)."""

    token_endpoint: str
    refresh_token: str
    client_id: str
    grant_type: str = "refresh_token"

    @classmethod
    def for_provider(
        cls, provider: ProviderConfig, refresh_token: str
    ) -> RefreshTokenRequest:
        return cls(
            token_endpoint=provider.token_url,
            refresh_token=refresh_token,
            client_id=provider.client_id,
        )

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request."""
        return {
            "grant_type": self.grant_type,
            "refresh_token": self.refresh_token,
            "client_id": self.client_id,
        }
