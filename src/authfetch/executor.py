"""
Execution of a single logical request: token attachment, timeout and the 401 retry loop.
"""

import logging
from collections.abc import Mapping
from typing import Any

import anyio
import httpx

from authfetch.descriptor import RequestDescriptor, build_url
from authfetch.dispatch import ResponseType, decode_response
from authfetch.errors import AuthRefreshFailed, ExpiredTokenSignal, classify_transport_error
from authfetch.refresh import RefreshCoordinator
from authfetch.token_state import TokenState, is_expired

logger = logging.getLogger(__name__)


class RequestExecutor:
    """Runs requests against the backend on behalf of the client."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_state: TokenState,
        refresh_coordinator: RefreshCoordinator,
        base_url: str | None = None,
        default_headers: Mapping[str, str] | None = None,
    ):
        self.http_client = http_client
        self.token_state = token_state
        self.refresh_coordinator = refresh_coordinator
        self.base_url = base_url
        self.default_headers = dict(default_headers or {})

    async def fetch(self, descriptor: RequestDescriptor) -> Any:
        """
        Send the request and decode its response.

        A 401 on a request using the client's own token forces a refresh and a
        retry, at most ``descriptor.max_retry_attempts`` times. Requests with
        ``skip_auth`` or an override token are never retried.

        Raises:
            AuthRefreshFailed: If a refresh fails or the retry ceiling is reached.
            HttpStatusError: For any other non-2xx response.
            RequestTimeoutError: If the request's timeout fires.
            NetworkUnavailableError: If the backend cannot be reached.
            TransportError: For any other transport failure.
        """
        fresh_token: str | None = None

        while True:
            token = await self._resolve_token(descriptor, fresh_token)
            try:
                response = await self._send(descriptor, token)
                if response.status_code == 401 and descriptor.uses_managed_auth:
                    await response.aclose()
                    raise ExpiredTokenSignal(f"{descriptor.method} {descriptor.url} was rejected with 401")
            except ExpiredTokenSignal:
                if descriptor.attempt >= descriptor.max_retry_attempts:
                    logger.warning(f"Giving up after {descriptor.attempt} token refresh attempt(s)")
                    await self.refresh_coordinator.notify_auth_failure()
                    raise AuthRefreshFailed("Max token refresh attempts reached", attempts=descriptor.attempt)

                fresh_token = await self.refresh_coordinator.ensure_fresh_token(rejected_token=token)
                descriptor = descriptor.next_attempt()
                logger.debug(f"Retrying {descriptor.method} {descriptor.url}, attempt {descriptor.attempt}")
                continue

            return await decode_response(response, descriptor.response_type)

    async def _resolve_token(self, descriptor: RequestDescriptor, fresh_token: str | None) -> str | None:
        if descriptor.skip_auth:
            return None
        if descriptor.override_token is not None:
            return descriptor.override_token
        if fresh_token is not None:
            return fresh_token

        token = await self.token_state.access_token()
        if is_expired(token):
            token = await self.refresh_coordinator.ensure_fresh_token()
        return token

    def _build_request(self, descriptor: RequestDescriptor, token: str | None) -> httpx.Request:
        headers = httpx.Headers(self.default_headers)
        headers.update(descriptor.headers)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        request = self.http_client.build_request(
            descriptor.method,
            build_url(descriptor.url, descriptor.params, self.base_url),
            headers=headers,
            content=descriptor.content,
            data=descriptor.form,
            json=descriptor.json_body,
        )
        if descriptor.timeout_seconds is not None:
            request.extensions["timeout"] = httpx.Timeout(descriptor.timeout_seconds).as_dict()
        return request

    async def _send(self, descriptor: RequestDescriptor, token: str | None) -> httpx.Response:
        request = self._build_request(descriptor, token)
        timeout = descriptor.timeout_seconds
        stream = descriptor.response_type is ResponseType.STREAM

        try:
            with anyio.fail_after(timeout):
                return await self.http_client.send(request, stream=stream)
        except TimeoutError as e:
            raise classify_transport_error(e, timed_out=True, timeout=timeout) from e
        except Exception as e:
            raise classify_transport_error(e, timeout=timeout) from e
