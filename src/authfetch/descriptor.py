"""
Request descriptors and URL construction.
"""

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from authfetch.dispatch import ResponseType


def build_url(url: str, params: Mapping[str, Any] | None = None, base_url: str | None = None) -> str:
    """
    Resolve a request URL and merge query parameters into it.

    Relative URLs are appended to ``base_url``. Keys in ``params`` overwrite the
    same keys already present in the query, new keys are appended and all
    other keys are preserved.
    """
    target = httpx.URL(url)
    if base_url and target.is_relative_url:
        target = httpx.URL(f"{base_url.rstrip('/')}/{url.lstrip('/')}")

    if params:
        target = target.copy_merge_params(params)

    return str(target)


@dataclass
class RequestDescriptor:
    """One logical request, including where it is in its 401 retry chain.

    ``timeout`` is in milliseconds; None or a non-positive value disables it.
    """

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] | None = None
    content: bytes | str | None = None
    json_body: Any = None
    form: Mapping[str, Any] | None = None
    timeout: float | None = None
    max_retry_attempts: int = 2
    attempt: int = 0
    skip_auth: bool = False
    override_token: str | None = None
    response_type: ResponseType | str = ResponseType.JSON

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.response_type = ResponseType.parse(self.response_type)

        if self.timeout is not None and self.timeout <= 0:
            self.timeout = None

        if self.max_retry_attempts < 0:
            raise ValueError(f"max_retry_attempts must be >= 0, got {self.max_retry_attempts}")
        if not 0 <= self.attempt <= self.max_retry_attempts:
            raise ValueError(f"attempt {self.attempt} is outside [0, {self.max_retry_attempts}]")

    @property
    def timeout_seconds(self) -> float | None:
        return None if self.timeout is None else self.timeout / 1000

    @property
    def uses_managed_auth(self) -> bool:
        """Whether the client's own token and refresh flow apply to this request."""
        return not self.skip_auth and self.override_token is None

    def next_attempt(self) -> "RequestDescriptor":
        return dataclasses.replace(self, attempt=self.attempt + 1)
