from authfetch.client import AuthFetchClient
from authfetch.descriptor import RequestDescriptor, build_url
from authfetch.dispatch import ResponseType, decode_response
from authfetch.errors import (
    AuthFetchError,
    AuthRefreshFailed,
    HttpStatusError,
    NetworkUnavailableError,
    RequestTimeoutError,
    ResponseDecodeError,
    TransportError,
    UnsupportedResponseType,
    classify_transport_error,
)
from authfetch.executor import RequestExecutor
from authfetch.refresh import RefreshCoordinator, RefreshState
from authfetch.settings import AuthFetchSettings
from authfetch.token_state import InMemoryTokenStore, TokenPair, TokenState, TokenStore, is_expired

__all__ = [
    "AuthFetchClient",
    "AuthFetchError",
    "AuthFetchSettings",
    "AuthRefreshFailed",
    "HttpStatusError",
    "InMemoryTokenStore",
    "NetworkUnavailableError",
    "RefreshCoordinator",
    "RefreshState",
    "RequestDescriptor",
    "RequestExecutor",
    "RequestTimeoutError",
    "ResponseDecodeError",
    "ResponseType",
    "TokenPair",
    "TokenState",
    "TokenStore",
    "TransportError",
    "UnsupportedResponseType",
    "build_url",
    "classify_transport_error",
    "decode_response",
    "is_expired",
]
