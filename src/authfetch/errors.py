"""
Error types raised by authfetch and the mapping from transport failures onto them.
"""

import errno
import socket
from typing import Any

import httpx


class AuthFetchError(Exception):
    """Base exception for all authfetch errors."""

    pass


class ExpiredTokenSignal(AuthFetchError):
    """Raised internally when the current access token must be refreshed.

    Never escapes the request executor.
    """

    pass


class AuthRefreshFailed(AuthFetchError):
    """Raised when the refresh operation fails or the 401 retry ceiling is exhausted."""

    def __init__(self, message: str, attempts: int | None = None):
        super().__init__(message)
        self.attempts = attempts


class HttpStatusError(AuthFetchError):
    """Raised for a non-2xx response that was not consumed by the auth retry loop."""

    def __init__(self, status_code: int, reason: str, body: Any = None, response: httpx.Response | None = None):
        super().__init__(f"HTTP {status_code}: {reason}")
        self.status_code = status_code
        self.reason = reason
        self.body = body
        self.response = response


class RequestTimeoutError(AuthFetchError, TimeoutError):
    """Raised when a request's own timeout cancels its transport call."""

    def __init__(self, message: str = "Request timeout exceeded", timeout: float | None = None):
        super().__init__(message)
        self.timeout = timeout


class NetworkUnavailableError(AuthFetchError, ConnectionError):
    """Raised when the backend is unreachable (no route, DNS failure, connection refused)."""

    pass


class UnsupportedResponseType(AuthFetchError, ValueError):
    """Raised when a request declares a response type that has no decoder."""

    def __init__(self, response_type: object):
        super().__init__(f"Unsupported response type: {response_type!r}")
        self.response_type = response_type


class ResponseDecodeError(AuthFetchError, ValueError):
    """Raised when a successful response body does not match its declared type."""

    pass


class TransportError(AuthFetchError):
    """Catch-all for transport failures; the original error is kept as ``__cause__``."""

    pass


_UNREACHABLE_ERRNOS = {
    errno.ECONNREFUSED,
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.ENETDOWN,
    errno.EHOSTDOWN,
}


def _is_network_unavailable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.ConnectError | socket.gaierror | ConnectionRefusedError):
        return True
    if isinstance(exc, OSError) and exc.errno in _UNREACHABLE_ERRNOS:
        return True
    return False


def classify_transport_error(
    exc: Exception, *, timed_out: bool = False, timeout: float | None = None
) -> AuthFetchError:
    """Map a failure from the transport call onto the authfetch error taxonomy.

    ``timed_out`` is set by the caller when the request's own timer fired. The
    returned error always chains the original exception as its cause.
    """
    if isinstance(exc, AuthFetchError):
        return exc

    if timed_out or isinstance(exc, httpx.TimeoutException):
        error: AuthFetchError = RequestTimeoutError(timeout=timeout)
    elif _is_network_unavailable(exc) or _is_network_unavailable(exc.__cause__ or exc):
        error = NetworkUnavailableError(f"Network error or server unreachable: {exc}")
    else:
        error = TransportError(str(exc) or type(exc).__name__)

    error.__cause__ = exc
    return error
