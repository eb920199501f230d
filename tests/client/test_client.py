"""
End-to-end tests of AuthFetchClient against a Starlette backend.
"""

import time

import anyio
import httpx
import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route

from authfetch.client import AuthFetchClient
from authfetch.errors import AuthRefreshFailed, HttpStatusError
from authfetch.settings import AuthFetchSettings
from authfetch.token_state import InMemoryTokenStore


class MockBackend:
    """Backend that issues tokens on /auth/refresh and protects /me."""

    def __init__(self, make_token):
        self.make_token = make_token
        self.valid_tokens: set[str] = set()
        self.refresh_tokens = {"refresh-1"}
        self.refresh_calls = 0
        self.seen_tokens: list[str] = []
        self.app = Starlette(
            routes=[
                Route("/auth/refresh", self.refresh, methods=["POST"]),
                Route("/me", self.me),
                Route("/health", self.health),
            ]
        )

    async def refresh(self, request: Request):
        self.refresh_calls += 1
        # Let concurrent requests pile up behind the refresh
        await anyio.sleep(0.01)

        body = await request.json()
        if body.get("refresh_token") not in self.refresh_tokens:
            return JSONResponse({"error": "invalid_grant"}, status_code=401)

        access_token = self.make_token(exp=time.time() + 3600)
        self.valid_tokens.add(access_token)
        return JSONResponse({"access_token": access_token, "refresh_token": "refresh-1"})

    async def me(self, request: Request):
        authorization = request.headers.get("authorization", "")
        self.seen_tokens.append(authorization.removeprefix("Bearer "))
        if authorization.removeprefix("Bearer ") not in self.valid_tokens:
            return JSONResponse({"error": "invalid_token"}, status_code=401)
        return JSONResponse({"user": "alice", "query": dict(request.query_params)})

    async def health(self, request: Request):
        return PlainTextResponse("ok")


@pytest.fixture
def backend(make_token):
    return MockBackend(make_token)


def make_client(backend: MockBackend, access_token: str | None, refresh_token: str = "refresh-1", **kwargs):
    client: AuthFetchClient

    async def refresh_operation(current_refresh_token: str | None):
        return await client.post(
            "/auth/refresh",
            json={"refresh_token": current_refresh_token},
            skip_auth=True,
        )

    client = AuthFetchClient(
        refresh_operation,
        token_store=InMemoryTokenStore(access_token, refresh_token),
        transport=httpx.ASGITransport(app=backend.app),
        base_url="http://testserver",
        **kwargs,
    )
    return client


@pytest.mark.anyio
async def test_concurrent_requests_with_expired_token_refresh_once(backend, make_token):
    results = []

    async with make_client(backend, make_token(exp=time.time() - 10)) as client:

        async def request(n: int):
            results.append(await client.get("/me", params={"n": n}))

        async with anyio.create_task_group() as tg:
            for n in range(5):
                tg.start_soon(request, n)

    assert backend.refresh_calls == 1
    assert sorted(result["query"]["n"] for result in results) == ["0", "1", "2", "3", "4"]
    assert all(result["user"] == "alice" for result in results)


@pytest.mark.anyio
async def test_server_rejection_of_unexpired_token_triggers_refresh(backend, make_token):
    revoked = make_token(exp=time.time() + 3600)

    async with make_client(backend, revoked) as client:
        assert (await client.get("/me"))["user"] == "alice"

    assert backend.refresh_calls == 1


@pytest.mark.anyio
async def test_concurrent_401s_on_unexpired_token_refresh_once(backend, make_token):
    revoked = make_token(exp=time.time() + 3600)
    results = []

    async with make_client(backend, revoked) as client:

        async def request(n: int):
            results.append(await client.get("/me", params={"n": n}))

        async with anyio.create_task_group() as tg:
            for n in range(6):
                tg.start_soon(request, n)

    assert backend.refresh_calls == 1
    assert len(results) == 6
    assert all(result["user"] == "alice" for result in results)

    retried_with = [token for token in backend.seen_tokens if token != revoked]
    assert backend.seen_tokens.count(revoked) == 6
    assert len(retried_with) == 6
    assert set(retried_with) == backend.valid_tokens


@pytest.mark.anyio
async def test_rejected_refresh_token_fails_all_requests_and_fires_hook_once(backend, make_token):
    failures = []
    hook_calls = []

    async with make_client(
        backend, make_token(exp=time.time() - 10), refresh_token="revoked", on_auth_failure=lambda: hook_calls.append(1)
    ) as client:

        async def request():
            try:
                await client.get("/me")
            except AuthRefreshFailed as e:
                failures.append(e)

        async with anyio.create_task_group() as tg:
            for _ in range(4):
                tg.start_soon(request)

    assert len(failures) == 4
    assert hook_calls == [1]
    assert all(isinstance(failure.__cause__, HttpStatusError) for failure in failures)


@pytest.mark.anyio
async def test_skip_auth_reaches_public_route_without_tokens(backend):
    async with make_client(backend, None) as client:
        assert await client.get("/health", skip_auth=True, response_type="text") == "ok"

    assert backend.refresh_calls == 0


@pytest.mark.anyio
async def test_settings_supply_defaults(backend, make_token, monkeypatch):
    monkeypatch.setenv("AUTHFETCH_MAX_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("AUTHFETCH_TIMEOUT_MS", "1500")
    monkeypatch.setenv("AUTHFETCH_DEFAULT_HEADERS", '{"X-Client": "authfetch-tests"}')

    settings = AuthFetchSettings()
    assert settings.max_retry_attempts == 5
    assert settings.default_headers == {"X-Client": "authfetch-tests"}

    async with make_client(backend, make_token(exp=time.time() + 3600), settings=settings) as client:
        assert client.max_retry_attempts == 5
        assert client.timeout == 1500
        assert client.executor.default_headers == {"X-Client": "authfetch-tests"}


@pytest.mark.anyio
async def test_explicit_arguments_win_over_settings(backend):
    settings = AuthFetchSettings(max_retry_attempts=5, timeout_ms=1500)

    async with make_client(backend, None, settings=settings, max_retry_attempts=1, timeout=200) as client:
        assert client.max_retry_attempts == 1
        assert client.timeout == 200


@pytest.mark.anyio
async def test_supplied_http_client_is_not_closed(backend):
    http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=backend.app), base_url="http://testserver")

    async def refresh_operation(refresh_token):
        raise AssertionError("not expected")

    async with AuthFetchClient(refresh_operation, http_client=http_client) as client:
        assert await client.get("/health", skip_auth=True, response_type="text") == "ok"

    assert not http_client.is_closed
    await http_client.aclose()
