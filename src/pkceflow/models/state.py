"""Authentication session states, events and the transition function.

The session owns a single ``SessionState`` value. Every change goes through
``transition(state, event)``, which either returns the next state or raises
``InvalidTransitionError``. Keeping the table here, free of I/O, lets display
layers and tests reason about the flow without running it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pkceflow.models.errors import InvalidTransitionError, OAuth2Error
from pkceflow.models.tokens import AccessToken

# States


@dataclass(frozen=True)
class Initialized:
    pass


@dataclass(frozen=True)
class Authenticating:
    pass


@dataclass(frozen=True)
class CodeReceived:
    code: str = field(repr=False)


@dataclass(frozen=True)
class Authenticated:
    token: AccessToken


@dataclass(frozen=True)
class Failed:
    reason: OAuth2Error | None = None


@dataclass(frozen=True)
class Cancelled:
    pass


@dataclass(frozen=True)
class Error:
    cause: BaseException


SessionState = (
    Initialized
    | Authenticating
    | CodeReceived
    | Authenticated
    | Failed
    | Cancelled
    | Error
)

# Events


@dataclass(frozen=True)
class AuthorizationStarted:
    pass


@dataclass(frozen=True)
class AuthorizationErrored:
    cause: BaseException


@dataclass(frozen=True)
class AuthorizationCancelled:
    """The user dismissed the authorization page."""

    pass


@dataclass(frozen=True)
class AuthorizationCodeReceived:
    code: str = field(repr=False)


@dataclass(frozen=True)
class AuthorizationRejected:
    """The callback carried no usable code."""

    reason: OAuth2Error


@dataclass(frozen=True)
class TokenIssued:
    token: AccessToken


@dataclass(frozen=True)
class ExchangeFailed:
    reason: OAuth2Error


@dataclass(frozen=True)
class CancelRequested:
    pass


@dataclass(frozen=True)
class ResetRequested:
    pass


SessionEvent = (
    AuthorizationStarted
    | AuthorizationErrored
    | AuthorizationCancelled
    | AuthorizationCodeReceived
    | AuthorizationRejected
    | TokenIssued
    | ExchangeFailed
    | CancelRequested
    | ResetRequested
)


def transition(state: SessionState, event: SessionEvent) -> SessionState:
    """Compute the state that follows ``state`` when ``event`` happens.

    Raises:
        InvalidTransitionError: If the event is not accepted in this state
    """
    # Accepted from every state
    if isinstance(event, ResetRequested):
        return Initialized()
    if isinstance(event, AuthorizationStarted):
        return Authenticating()

    if isinstance(state, Authenticating):
        if isinstance(event, AuthorizationErrored):
            return Error(cause=event.cause)
        if isinstance(event, (AuthorizationCancelled, CancelRequested)):
            return Cancelled()
        if isinstance(event, AuthorizationCodeReceived):
            return CodeReceived(code=event.code)
        if isinstance(event, AuthorizationRejected):
            return Failed(reason=event.reason)

    elif isinstance(state, CodeReceived):
        if isinstance(event, TokenIssued):
            return Authenticated(token=event.token)
        if isinstance(event, ExchangeFailed):
            return Failed(reason=event.reason)
        if isinstance(event, CancelRequested):
            return Cancelled()

    elif isinstance(state, Authenticated):
        if isinstance(event, TokenIssued):
            return Authenticated(token=event.token)

    raise InvalidTransitionError(
        f"{type(event).__name__} is not valid in state {type(state).__name__}"
    )
