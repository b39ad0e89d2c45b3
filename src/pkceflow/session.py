"""Authentication session: the state machine driving the PKCE flow.

Coordinates PKCE generation, the web-auth presenter, callback parsing, the
token exchange, token persistence and refresh, and publishes every state
change to subscribed observers.

All mutations of ``state`` and ``current_token`` go through ``_apply`` on
the event loop that owns the session. Work that suspends (presentation and
HTTP calls) runs in tasks whose completions are checked against the attempt
id or token generation they started with; stale completions are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from pkceflow.models.errors import (
    OAuth2Error,
    PKCEError,
    SecretStoreError,
    TokenError,
    TransportError,
    UserAuthCancelledError,
)
from pkceflow.models.provider import ProviderConfig
from pkceflow.models.state import (
    Authenticated,
    Authenticating,
    AuthorizationCancelled,
    AuthorizationCodeReceived,
    AuthorizationErrored,
    AuthorizationRejected,
    AuthorizationStarted,
    CancelRequested,
    CodeReceived,
    ExchangeFailed,
    Initialized,
    ResetRequested,
    SessionEvent,
    SessionState,
    TokenIssued,
    transition,
)
from pkceflow.models.tokens import AccessToken
from pkceflow.presenters import WebAuthPresenter
from pkceflow.primitives.pkce import PKCEManager, PKCEParameters
from pkceflow.services.flow import extract_authorization_code
from pkceflow.services.tokens import OAuth2TokenClient
from pkceflow.storage.secrets import (
    DEFAULT_ACCOUNT,
    DEFAULT_SERVICE,
    SecretStore,
    TokenVault,
)

logger = logging.getLogger(__name__)

StateObserver = Callable[[SessionState], None]


class AuthenticationSession:
    """OAuth 2.0 authorization code + PKCE session for a single account.

    On construction the session tries to restore a persisted token; a
    decodable one puts it straight into ``Authenticated``.

    Args:
        provider: Provider endpoints and client identity
        presenter: Shows the authorization page and returns the callback
        secret_store: Where the current token is persisted
        token_client: Token endpoint client; one is created if omitted
        service: Secret store service name for the token
        account: Secret store account name for the token
    """

    def __init__(
        self,
        provider: ProviderConfig,
        presenter: WebAuthPresenter,
        secret_store: SecretStore,
        token_client: OAuth2TokenClient | None = None,
        *,
        service: str = DEFAULT_SERVICE,
        account: str = DEFAULT_ACCOUNT,
    ):
        self.provider = provider
        self.presenter = presenter
        self._owns_token_client = token_client is None
        self.token_client = token_client or OAuth2TokenClient()
        self._vault = TokenVault(secret_store, service=service, account=account)
        self._pkce_manager = PKCEManager()
        self._observers: list[StateObserver] = []

        self._pkce: PKCEParameters | None = None
        self._attempt_id = 0
        self._attempt_task: asyncio.Task[None] | None = None
        self._token_generation = 0

        token = self._vault.load()
        self._current_token: AccessToken | None = token
        if token is not None:
            logger.info("Token restored from secret store")
            self._state: SessionState = Authenticated(token=token)
        else:
            self._state = Initialized()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_token(self) -> AccessToken | None:
        return self._current_token

    @property
    def is_authenticated(self) -> bool:
        return isinstance(self._state, Authenticated)

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Call ``observer`` with every new state.

        Returns:
            A function that removes the observer again
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    # Authorization flow

    def start(self) -> asyncio.Task[None]:
        """Start a new authorization attempt.

        Any attempt still in flight is abandoned first so its verifier can
        never be paired with a later callback. Must be called from the event
        loop that owns the session.

        Returns:
            The task running the attempt. Awaiting it is optional.
        """
        if isinstance(self._state, (Authenticating, CodeReceived)):
            logger.info("Superseding authorization attempt in progress")
            self._abandon_attempt()

        pkce = self._pkce_manager.generate_parameters()
        self._attempt_id += 1
        self._token_generation += 1
        self._pkce = pkce
        attempt_id = self._attempt_id

        auth_url = self.provider.authorize_url(pkce.code_challenge)
        self._apply(AuthorizationStarted())

        logger.debug(f"Starting authorization attempt {attempt_id}")
        self._attempt_task = asyncio.create_task(
            self._run_attempt(attempt_id, auth_url)
        )
        return self._attempt_task

    def cancel(self) -> bool:
        """Cancel the authorization attempt in progress.

        Returns:
            True if an attempt was cancelled, False if there was none
        """
        if not isinstance(self._state, (Authenticating, CodeReceived)):
            logger.debug(
                f"Ignoring cancel in state {type(self._state).__name__}"
            )
            return False

        self._abandon_attempt()
        self._apply(CancelRequested())
        logger.info("Authorization cancelled")
        return True

    def reset(self) -> None:
        """Forget the current token and return to ``Initialized``.

        Deletes the persisted token and invalidates any attempt or refresh
        still in flight.
        """
        if isinstance(self._state, (Authenticating, CodeReceived)):
            self._abandon_attempt()
        self._token_generation += 1
        self._current_token = None
        try:
            self._vault.clear()
        except SecretStoreError as e:
            logger.warning(f"Failed to delete stored token: {e}")
        else:
            logger.info("Cleared token from secret store")
        self._apply(ResetRequested())

    async def _run_attempt(self, attempt_id: int, auth_url: str) -> None:
        try:
            callback_url = await self.presenter.present(
                auth_url, self.provider.callback_scheme
            )
        except UserAuthCancelledError:
            if self._is_current(attempt_id):
                self._pkce = None
                self._apply(AuthorizationCancelled())
            return
        except Exception as e:
            if self._is_current(attempt_id):
                logger.warning(f"Web authorization failed: {e}")
                self._pkce = None
                self._apply(AuthorizationErrored(cause=e))
            return

        if not self._is_current(attempt_id):
            logger.debug(f"Discarding callback of stale attempt {attempt_id}")
            return

        try:
            code = extract_authorization_code(callback_url)
        except OAuth2Error as e:
            self._pkce = None
            self._apply(AuthorizationRejected(reason=e))
            return

        self._apply(AuthorizationCodeReceived(code=code))
        await self._exchange_code(attempt_id, code)

    async def _exchange_code(self, attempt_id: int, code: str) -> None:
        pkce = self._pkce
        if pkce is None:
            self._apply(
                ExchangeFailed(reason=PKCEError("No code verifier for this attempt"))
            )
            return

        try:
            token = await self.token_client.exchange_code(
                code, pkce.code_verifier, self.provider
            )
        except (TokenError, TransportError) as e:
            if self._is_current(attempt_id):
                logger.warning(f"Authorization code exchange failed: {e}")
                self._pkce = None
                self._apply(ExchangeFailed(reason=e))
            return

        if not self._is_current(attempt_id):
            logger.warning(f"Discarding token of stale attempt {attempt_id}")
            return

        self._pkce = None
        self._current_token = token
        self._persist(token)
        self._apply(TokenIssued(token=token))
        logger.info("Authorization complete")

    # Refresh

    async def refresh_access_token(self) -> AccessToken | None:
        """Exchange the current refresh token for a new access token.

        Returns:
            The new token, or None if there is nothing to refresh, the
            exchange failed, or the session moved on meanwhile. A failed
            refresh leaves the state untouched.
        """
        token = self._current_token
        if not isinstance(self._state, Authenticated) or token is None:
            logger.debug("No authenticated token to refresh")
            return None
        if not token.can_refresh():
            logger.debug("Current token has no refresh token")
            return None

        generation = self._token_generation
        try:
            new_token = await self.token_client.refresh_token(
                token.refresh_token, self.provider
            )
        except (TokenError, TransportError) as e:
            logger.warning(f"Token refresh failed: {e}")
            return None

        if generation != self._token_generation or not isinstance(
            self._state, Authenticated
        ):
            logger.warning("Discarding refreshed token, session changed meanwhile")
            return None

        self._current_token = new_token
        self._persist(new_token)
        self._apply(TokenIssued(token=new_token))
        logger.info("Access token refreshed")
        return new_token

    def refresh(self) -> asyncio.Task[AccessToken | None]:
        """Schedule ``refresh_access_token`` on the running event loop."""
        return asyncio.create_task(self.refresh_access_token())

    async def close(self) -> None:
        """Abandon any attempt in flight and release the token client."""
        if isinstance(self._state, (Authenticating, CodeReceived)):
            self._abandon_attempt()
            self._apply(CancelRequested())
        if self._owns_token_client:
            await self.token_client.close()

    # Internals

    def _is_current(self, attempt_id: int) -> bool:
        return attempt_id == self._attempt_id

    def _abandon_attempt(self) -> None:
        self._attempt_id += 1
        self._pkce = None
        self.presenter.cancel()

    def _persist(self, token: AccessToken) -> None:
        try:
            self._vault.save(token)
        except SecretStoreError as e:
            logger.warning(f"Failed to persist token: {e}")
        else:
            logger.debug("Access token stored in secret store")

    def _apply(self, event: SessionEvent) -> None:
        """Single entry point for state changes."""
        previous = self._state
        self._state = transition(previous, event)
        logger.debug(
            f"Session state {type(previous).__name__} -> {type(self._state).__name__}"
        )
        for observer in list(self._observers):
            try:
                observer(self._state)
            except Exception:
                logger.exception("Session state observer failed")
