"""Exception hierarchy for the PKCE authorization code flow.

Provides specific exception types for different failure modes so that the
session can map each of them onto a well-defined state.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth 2.0 related errors."""

    pass


class ConfigurationError(OAuth2Error):
    """Raised when a provider configuration is missing or malformed."""

    pass


class PKCEError(OAuth2Error):
    """Raised when PKCE parameter generation fails or a verifier is missing."""

    pass


class TransportError(OAuth2Error):
    """Raised when the token endpoint cannot be reached."""

    pass


class TokenError(OAuth2Error):
    """Raised when token operations fail."""

    pass


class TokenExchangeError(TokenError):
    """Raised when the token endpoint does not issue a usable token.

    Covers non-200 responses as well as undecodable or incomplete JSON
    bodies. When the server returned an RFC 6749 error body, the OAuth error
    code and description are kept on the exception.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.error_description = error_description


class TokenRefreshError(TokenExchangeError):
    """Raised when a refresh token grant fails."""

    pass


class NoRefreshTokenError(TokenError):
    """Raised when a refresh is requested for a token without refresh token."""

    pass


class AuthorizationError(OAuth2Error):
    """Raised when user authorization fails."""

    pass


class UserAuthCancelledError(AuthorizationError):
    """Raised when user cancels the authorization flow."""

    pass


class PresentationError(AuthorizationError):
    """Raised when the web authorization page cannot be presented."""

    pass


class AuthorizationCallbackError(OAuth2Error):
    """Raised when authorization server callback data is malformed or invalid.

    This indicates the authorization server sent an invalid callback URL,
    not that our callback handling code failed.
    """

    pass


class CallbackMissingCodeError(AuthorizationCallbackError):
    """Raised when the redirect lacks the ``code`` query parameter."""

    pass


class SecretStoreError(OAuth2Error):
    """Raised when the secret store cannot read, write or delete an entry."""

    pass


class StoreCorruptError(SecretStoreError):
    """Raised when a persisted token cannot be decoded."""

    pass


class InvalidTransitionError(OAuth2Error):
    """Raised when an event is not accepted by the current session state."""

    pass
