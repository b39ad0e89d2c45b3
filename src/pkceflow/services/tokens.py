"""OAuth 2.0 token exchange service.

Implements the RFC 6749 token endpoint interactions used by the PKCE
authorization code flow: authorization code grant (with the RFC 7636
code_verifier) and refresh token grant. The client never retries; retry
policy belongs to the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

import httpx
from pydantic import ValidationError

from pkceflow.models.errors import (
    NoRefreshTokenError,
    TokenExchangeError,
    TokenRefreshError,
    TransportError,
)
from pkceflow.models.provider import ProviderConfig
from pkceflow.models.tokens import (
    AccessToken,
    RefreshTokenRequest,
    TokenRequest,
    TokenResponse,
    utcnow,
)

logger = logging.getLogger(__name__)

FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
    "Accept": "application/json",
}


class OAuth2TokenClient:
    """Performs the two token endpoint exchanges of the PKCE flow.

    Handles:
    - Authorization code to access token exchange (RFC 6749 Section 4.1.3)
    - Access token refresh (RFC 6749 Section 6)
    - PKCE code verification (RFC 7636)

    Uses application/x-www-form-urlencoded encoding as required by RFC 6749.
    Only an HTTP 200 carrying a JSON ``access_token`` counts as success.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the token client.

        Args:
            timeout: HTTP request timeout in seconds, used when the client
                creates its own HTTP client
            http_client: Transport to use instead of a private one. It is
                not closed by ``close()``.
            clock: Returns the time recorded as ``issued_at``
        """
        self.timeout = timeout
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._clock = clock or utcnow

    async def exchange_code(
        self, code: str, code_verifier: str, provider: ProviderConfig
    ) -> AccessToken:
        """Exchange an authorization code for an access token.

        Args:
            code: Authorization code from the callback
            code_verifier: PKCE verifier of the same authorization attempt
            provider: Provider whose token endpoint is used

        Returns:
            AccessToken: The newly issued token

        Raises:
            TransportError: If the token endpoint cannot be reached
            TokenExchangeError: If the endpoint does not issue a token
        """
        token_request = TokenRequest.for_provider(provider, code, code_verifier)
        logger.debug(f"Exchanging authorization code at {token_request.token_endpoint}")

        form_data = token_request.to_form_data()
        logger.debug(
            f"Token request: grant_type={form_data['grant_type']}, "
            f"client_id={form_data['client_id']}"
        )

        response = await self._post_form(token_request.token_endpoint, form_data)
        token_response = self._parse_token_response(response, TokenExchangeError)
        token = token_response.to_access_token(issued_at=self._clock())

        logger.info("Token exchange successful")
        return token

    async def refresh_token(
        self, refresh_token: str, provider: ProviderConfig
    ) -> AccessToken:
        """Obtain a new access token with a refresh token.

        If the server does not rotate the refresh token, the new token keeps
        the one that was sent.

        Raises:
            NoRefreshTokenError: If ``refresh_token`` is empty
            TransportError: If the token endpoint cannot be reached
            TokenRefreshError: If the endpoint does not issue a token
        """
        if not refresh_token:
            raise NoRefreshTokenError("No refresh token to exchange")

        refresh_request = RefreshTokenRequest.for_provider(provider, refresh_token)
        logger.debug(f"Refreshing access token at {refresh_request.token_endpoint}")

        response = await self._post_form(
            refresh_request.token_endpoint, refresh_request.to_form_data()
        )
        token_response = self._parse_token_response(response, TokenRefreshError)
        token = token_response.to_access_token(
            issued_at=self._clock(), fallback_refresh_token=refresh_token
        )

        logger.info("Token refresh successful")
        return token

    async def _post_form(self, url: str, form_data: dict[str, str]) -> httpx.Response:
        try:
            return await self._http_client.post(
                url,
                data=form_data,
                headers=FORM_HEADERS,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error calling token endpoint: {e}") from e

    def _parse_token_response(
        self,
        response: httpx.Response,
        error_cls: type[TokenExchangeError],
    ) -> TokenResponse:
        """Parse token endpoint response into a successful TokenResponse.

        Args:
            response: HTTP response from token endpoint
            error_cls: Exception type raised on failure

        Raises:
            TokenExchangeError: On any status other than 200, or a body that
                is not a JSON object with a string access_token
        """
        try:
            response_data = response.json()
        except ValueError:
            response_data = None

        if response.status_code != 200:
            # Error response (RFC 6749 Section 5.2), when the body is one
            error_code = None
            error_description = None
            if isinstance(response_data, dict):
                error_code = response_data.get("error")
                error_description = response_data.get("error_description")

            logger.warning(
                f"Token endpoint returned {response.status_code}: "
                f"{error_code or 'unknown_error'} - "
                f"{error_description or 'No description provided'}"
            )
            raise error_cls(
                f"Token endpoint returned HTTP {response.status_code}"
                + (f": {error_code}" if error_code else ""),
                status_code=response.status_code,
                error=error_code,
                error_description=error_description,
            )

        if not isinstance(response_data, dict):
            raise error_cls(
                "Invalid token response format: expected a JSON object",
                status_code=response.status_code,
            )

        try:
            token_response = TokenResponse(**response_data)
        except ValidationError as e:
            raise error_cls(
                f"Invalid token response format: {e}", status_code=response.status_code
            ) from e

        if not token_response.is_success():
            raise error_cls(
                "Token response missing required access_token",
                status_code=response.status_code,
                error=token_response.error,
                error_description=token_response.error_description,
            )

        return token_response

    async def close(self) -> None:
        """Close the HTTP client if this client created it."""
        if self._owns_http_client:
            await self._http_client.aclose()
