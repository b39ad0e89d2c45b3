"""OAuth provider configuration.

Describes the endpoints and client identity of a single authorization server
and builds the authorization URL for a PKCE code challenge.
"""

from __future__ import annotations

import os
from urllib.parse import quote, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, field_validator

from pkceflow.models.errors import ConfigurationError

DEFAULT_SCOPE = "profile offline_access openid"


class ProviderConfig(BaseModel):
    """Immutable description of an OAuth 2.0 provider (public client)."""

    model_config = ConfigDict(frozen=True)

    authorize_base_url: str
    token_url: str
    client_id: str
    redirect_uri: str
    scope: str = DEFAULT_SCOPE

    @field_validator("authorize_base_url", "token_url")
    @classmethod
    def validate_endpoint_url(cls, v: str) -> str:
        """Endpoints must be absolute http(s) URLs."""
        parsed = urlsplit(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Endpoint must be an absolute http(s) URL: {v!r}")
        return v

    @field_validator("redirect_uri")
    @classmethod
    def validate_redirect_uri(cls, v: str) -> str:
        """Redirect URIs may use a custom scheme (``myapp://cb``) but need one."""
        parsed = urlsplit(v)
        if not parsed.scheme or not (parsed.netloc or parsed.path):
            raise ValueError(f"Redirect URI must be an absolute URI: {v!r}")
        return v

    @field_validator("client_id")
    @classmethod
    def validate_client_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("client_id must not be empty")
        return v

    @property
    def callback_scheme(self) -> str:
        """URL scheme the web-auth presenter should listen for."""
        return urlsplit(self.redirect_uri).scheme

    def authorize_url(self, code_challenge: str) -> str:
        """Build the complete authorization URL for a code challenge.

        Parameters are emitted in a fixed order. A query string already
        present on the base URL is kept in front of them.
        """
        params = [
            ("client_id", self.client_id),
            ("code_challenge", code_challenge),
            ("redirect_uri", self.redirect_uri),
            ("response_type", "code"),
            ("scope", self.scope),
            ("code_challenge_method", "S256"),
        ]
        parts = urlsplit(self.authorize_base_url)
        query = urlencode(params, quote_via=quote)
        if parts.query:
            query = f"{parts.query}&{query}"
        return urlunsplit(
            (parts.scheme, parts.netloc, parts.path, query, parts.fragment)
        )

    @classmethod
    def from_env(
        cls, prefix: str = "PKCEFLOW_", environ: dict[str, str] | None = None
    ) -> ProviderConfig:
        """Build a provider configuration from environment variables.

        Reads ``<prefix>AUTHORIZE_URL``, ``<prefix>TOKEN_URL``,
        ``<prefix>CLIENT_ID``, ``<prefix>REDIRECT_URI`` and optionally
        ``<prefix>SCOPE``.

        Raises:
            ConfigurationError: If a required variable is unset or invalid
        """
        env = os.environ if environ is None else environ
        names = {
            "authorize_base_url": f"{prefix}AUTHORIZE_URL",
            "token_url": f"{prefix}TOKEN_URL",
            "client_id": f"{prefix}CLIENT_ID",
            "redirect_uri": f"{prefix}REDIRECT_URI",
        }
        missing = [var for var in names.values() if not env.get(var)]
        if missing:
            raise ConfigurationError(
                f"Missing provider configuration variables: {', '.join(missing)}"
            )

        values = {field: env[var] for field, var in names.items()}
        scope = env.get(f"{prefix}SCOPE")
        if scope:
            values["scope"] = scope

        try:
            return cls(**values)
        except ValueError as e:
            raise ConfigurationError(f"Invalid provider configuration: {e}") from e
