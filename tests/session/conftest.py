import asyncio
import json
from typing import Any, Callable
from urllib.parse import parse_qs

import httpx
import pytest

from pkceflow.models.provider import ProviderConfig
from pkceflow.presenters import CallbackPresenter
from pkceflow.services.tokens import OAuth2TokenClient
from pkceflow.session import AuthenticationSession
from pkceflow.storage.secrets import InMemorySecretStore


class FakeTokenEndpoint:
    """Token endpoint served through httpx.MockTransport."""

    def __init__(self):
        self.requests: list[dict[str, str]] = []
        self.responses: list[httpx.Response] = []
        self.gate: asyncio.Event | None = None

    def reply(self, status_code: int = 200, **body: Any) -> None:
        self.responses.append(httpx.Response(status_code, json=body))

    def reply_raw(self, status_code: int, content: bytes) -> None:
        self.responses.append(httpx.Response(status_code, content=content))

    async def handler(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.requests.append(form)
        if self.gate is not None:
            await self.gate.wait()
        return self.responses.pop(0)


class FakeAuthorizationPage:
    """Callback handler standing in for the browser.

    Each ``present`` consumes the next scripted outcome: a callback URL,
    None, an exception to raise, or ``WAIT_FOREVER``.
    """

    WAIT_FOREVER = object()

    def __init__(self):
        self.outcomes: list[Any] = []
        self.presented_urls: list[str] = []
        self.callback_schemes: list[str] = []
        self.before_return: Callable[[], None] | None = None

    async def handler(self, url: str, callback_scheme: str) -> str | None:
        self.presented_urls.append(url)
        self.callback_schemes.append(callback_scheme)
        outcome = self.outcomes.pop(0)
        if outcome is self.WAIT_FOREVER:
            await asyncio.Event().wait()
        if isinstance(outcome, BaseException):
            raise outcome
        if self.before_return is not None:
            self.before_return()
        return outcome


@pytest.fixture
def provider() -> ProviderConfig:
    return ProviderConfig(
        authorize_base_url="https://auth.example.com/application/o/authorize/",
        token_url="https://auth.example.com/application/o/token/",
        client_id="client-123",
        redirect_uri="myapp://cb",
    )


@pytest.fixture
def token_endpoint() -> FakeTokenEndpoint:
    return FakeTokenEndpoint()


@pytest.fixture
def auth_page() -> FakeAuthorizationPage:
    return FakeAuthorizationPage()


@pytest.fixture
def secret_store() -> InMemorySecretStore:
    return InMemorySecretStore()


@pytest.fixture
async def http_client(token_endpoint):
    client = httpx.AsyncClient(transport=httpx.MockTransport(token_endpoint.handler))
    yield client
    await client.aclose()


@pytest.fixture
def make_session(provider, auth_page, secret_store, http_client):
    def factory() -> AuthenticationSession:
        return AuthenticationSession(
            provider,
            CallbackPresenter(auth_page.handler),
            secret_store,
            OAuth2TokenClient(http_client=http_client),
        )

    return factory


@pytest.fixture
def stored_token(secret_store) -> Callable[[], dict[str, Any] | None]:
    def read() -> dict[str, Any] | None:
        data = secret_store.read("pkceflow", "accessToken")
        return None if data is None else json.loads(data)

    return read
