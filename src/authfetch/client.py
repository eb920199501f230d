"""
Bearer-token HTTP client.

Wraps an ``httpx.AsyncClient`` so that every request carries a valid access
token, expired tokens are refreshed once no matter how many requests notice,
and 401 responses trigger a bounded refresh-and-retry.
"""

from collections.abc import Mapping
from types import TracebackType
from typing import Any

import httpx

from authfetch.descriptor import RequestDescriptor
from authfetch.dispatch import ResponseType
from authfetch.executor import RequestExecutor
from authfetch.refresh import AuthFailureHook, RefreshCoordinator, RefreshOperation
from authfetch.settings import AuthFetchSettings
from authfetch.token_state import InMemoryTokenStore, TokenState, TokenStore


class AuthFetchClient:
    """
    HTTP client that manages bearer token authentication for one backend.

    Args:
        refresh_operation: Called with the current refresh token; returns a
            TokenPair or a mapping with ``access_token`` and ``refresh_token``.
        token_store: Where the token pair lives. Defaults to memory.
        on_auth_failure: Called once per terminal authentication failure.
        base_url: Prefix for relative request URLs.
        default_headers: Headers sent with every request.
        timeout: Default per-request timeout in milliseconds.
        max_retry_attempts: Default ceiling for 401 refresh-and-retry.
        refresh_timeout: Bound on one refresh operation, in milliseconds.
        http_client: An existing client to send requests with; it is not
            closed by this client.
        transport: Transport for the internally created client.
        settings: Defaults for any argument not given explicitly.
    """

    def __init__(
        self,
        refresh_operation: RefreshOperation,
        *,
        token_store: TokenStore | None = None,
        on_auth_failure: AuthFailureHook | None = None,
        base_url: str | None = None,
        default_headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        max_retry_attempts: int | None = None,
        refresh_timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        settings: AuthFetchSettings | None = None,
    ):
        settings = settings or AuthFetchSettings()

        self.timeout = timeout if timeout is not None else settings.timeout_ms
        self.max_retry_attempts = max_retry_attempts if max_retry_attempts is not None else settings.max_retry_attempts
        if refresh_timeout is None:
            refresh_timeout = settings.refresh_timeout_ms

        self._owns_http_client = http_client is None
        # Deadlines are applied per request, not by httpx defaults
        self.http_client = http_client or httpx.AsyncClient(transport=transport, timeout=None, follow_redirects=True)

        self.token_state = TokenState(token_store or InMemoryTokenStore())
        self.refresh_coordinator = RefreshCoordinator(
            self.token_state,
            refresh_operation,
            on_auth_failure=on_auth_failure,
            refresh_timeout=refresh_timeout / 1000 if refresh_timeout else None,
        )
        self.executor = RequestExecutor(
            self.http_client,
            self.token_state,
            self.refresh_coordinator,
            base_url=base_url or settings.base_url,
            default_headers={**settings.default_headers, **(default_headers or {})},
        )

    async def __aenter__(self) -> "AuthFetchClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
        content: bytes | str | None = None,
        data: Any = None,
        json: Any = None,
        form: Mapping[str, Any] | None = None,
        timeout: float | None = None,
        response_type: ResponseType | str = ResponseType.JSON,
        max_retry_attempts: int | None = None,
        skip_auth: bool = False,
        override_token: str | None = None,
    ) -> Any:
        """
        Send a request and return its decoded body.

        ``data`` is sent as JSON when it is a mapping or list and as the raw body
        when it is str or bytes. ``form`` is sent url-encoded. ``timeout`` is in
        milliseconds; pass 0 to disable the default.
        """
        if data is not None:
            if json is not None or content is not None:
                raise ValueError("Pass only one of data, json and content")
            if isinstance(data, str | bytes):
                content = data
            else:
                json = data

        descriptor = RequestDescriptor(
            method=method,
            url=url,
            headers=dict(headers or {}),
            params=params,
            content=content,
            json_body=json,
            form=form,
            timeout=timeout if timeout is not None else self.timeout,
            max_retry_attempts=max_retry_attempts if max_retry_attempts is not None else self.max_retry_attempts,
            skip_auth=skip_auth,
            override_token=override_token,
            response_type=response_type,
        )
        return await self.executor.fetch(descriptor)

    async def get(self, url: str, **kwargs: Any) -> Any:
        return await self.fetch(url, method="GET", **kwargs)

    async def post(self, url: str, **kwargs: Any) -> Any:
        return await self.fetch(url, method="POST", **kwargs)

    async def put(self, url: str, **kwargs: Any) -> Any:
        return await self.fetch(url, method="PUT", **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> Any:
        return await self.fetch(url, method="PATCH", **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> Any:
        return await self.fetch(url, method="DELETE", **kwargs)
