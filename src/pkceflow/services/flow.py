"""Authorization callback handling.

Turns the redirect URI handed back by the web-auth presenter into the
authorization code, or into a typed error explaining why there is none.
"""

from __future__ import annotations

import logging
from urllib.parse import parse_qs, urlsplit

from pkceflow.models.errors import (
    AuthorizationCallbackError,
    AuthorizationError,
    CallbackMissingCodeError,
)
from pkceflow.models.flow import AuthorizationResponse

logger = logging.getLogger(__name__)


def parse_callback_url(callback_url: str) -> AuthorizationResponse:
    """Parse an OAuth callback URL into an AuthorizationResponse.

    Args:
        callback_url: Full callback URL from authorization server

    Returns:
        AuthorizationResponse: Parsed callback parameters

    Raises:
        AuthorizationCallbackError: If URL is malformed
    """
    try:
        parsed = urlsplit(callback_url)
        query_params = parse_qs(parsed.query)
    except ValueError as e:
        raise AuthorizationCallbackError(f"Failed to parse callback URL: {e}") from e

    def get_single_param(key: str) -> str | None:
        values = query_params.get(key, [])
        return values[0] if values else None

    return AuthorizationResponse(
        code=get_single_param("code"),
        state=get_single_param("state"),
        error=get_single_param("error"),
        error_description=get_single_param("error_description"),
        error_uri=get_single_param("error_uri"),
    )


def extract_authorization_code(callback_url: str | None) -> str:
    """Return the authorization code carried by a callback URL.

    Raises:
        CallbackMissingCodeError: If there is no callback or no ``code``
        AuthorizationError: If the provider redirected with an OAuth error
        AuthorizationCallbackError: If the callback URL is malformed
    """
    if callback_url is None:
        raise CallbackMissingCodeError("Web authorization returned no callback URL")

    response = parse_callback_url(callback_url)

    if response.is_error():
        logger.warning(
            f"Authorization callback contained error: {response.error} - "
            f"{response.error_description}"
        )
        raise AuthorizationError(f"Authorization failed: {response.describe_error()}")

    if not response.code:
        logger.warning("Authorization callback missing code parameter")
        raise CallbackMissingCodeError("Callback URL has no code parameter")

    logger.debug("Authorization callback successful - received authorization code")
    return response.code
