"""
Decoding of completed responses according to the declared response type.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from email.parser import BytesParser
from email.policy import HTTP
from enum import Enum
from typing import Any
from urllib.parse import parse_qs

import httpx

from authfetch.errors import HttpStatusError, ResponseDecodeError, UnsupportedResponseType

logger = logging.getLogger(__name__)


class ResponseType(str, Enum):
    """How a successful response body is handed back to the caller."""

    JSON = "json"
    TEXT = "text"
    BINARY = "binary"
    FORM_DATA = "form_data"
    STREAM = "stream"
    RAW = "raw"

    @classmethod
    def parse(cls, value: "ResponseType | str") -> "ResponseType":
        """Resolve a response type name, raising UnsupportedResponseType for unknown names."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            name = _ALIASES.get(value, value)
            try:
                return cls(name)
            except ValueError:
                pass
        raise UnsupportedResponseType(value)


# Names used by browser fetch APIs
_ALIASES = {
    "blob": "binary",
    "arrayBuffer": "binary",
    "bytes": "binary",
    "formData": "form_data",
}


def _error_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    if "json" in response.headers.get("content-type", ""):
        try:
            return response.json()
        except ValueError:
            pass
    return response.text


async def _decode_json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as e:
        raise ResponseDecodeError(f"Failed to parse JSON response: {e}") from e


async def _decode_text(response: httpx.Response) -> str:
    return response.text


async def _decode_binary(response: httpx.Response) -> bytes:
    return response.content


def _parse_multipart(response: httpx.Response) -> dict[str, list[str | bytes]]:
    header = f"Content-Type: {response.headers['content-type']}\r\n\r\n".encode("latin-1")
    message = BytesParser(policy=HTTP).parsebytes(header + response.content)
    if not message.is_multipart():
        raise ResponseDecodeError("Failed to parse multipart/form-data response")

    fields: dict[str, list[str | bytes]] = {}
    for part in message.iter_parts():
        name = part.get_param("name", header="content-disposition")
        if name is None:
            raise ResponseDecodeError("multipart/form-data part has no name")
        payload = part.get_payload(decode=True) or b""
        # File parts stay binary
        if part.get_filename() is None:
            payload = payload.decode(part.get_content_charset() or "utf-8", errors="replace")
        fields.setdefault(name, []).append(payload)
    return fields


async def _decode_form_data(response: httpx.Response) -> dict[str, list[str | bytes]]:
    content_type = response.headers.get("content-type", "")
    media_type = content_type.split(";", 1)[0].strip().lower()

    if media_type == "application/x-www-form-urlencoded":
        return dict(parse_qs(response.text, keep_blank_values=True))
    if media_type == "multipart/form-data":
        return _parse_multipart(response)
    raise ResponseDecodeError(f"Cannot read form data from a {content_type or 'untyped'} response")


async def _iter_stream(response: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    finally:
        await response.aclose()


async def _decode_stream(response: httpx.Response) -> AsyncIterator[bytes]:
    return _iter_stream(response)


async def _decode_raw(response: httpx.Response) -> httpx.Response:
    return response


_DECODERS: dict[ResponseType, Callable[[httpx.Response], Awaitable[Any]]] = {
    ResponseType.JSON: _decode_json,
    ResponseType.TEXT: _decode_text,
    ResponseType.BINARY: _decode_binary,
    ResponseType.FORM_DATA: _decode_form_data,
    ResponseType.STREAM: _decode_stream,
    ResponseType.RAW: _decode_raw,
}


async def decode_response(response: httpx.Response, response_type: ResponseType) -> Any:
    """
    Turn a completed response into the value returned to the caller.

    Non-2xx responses raise HttpStatusError carrying the parsed body. For
    ResponseType.STREAM the caller receives an async byte iterator that closes
    the response once exhausted; every other type reads the body first.
    """
    if not response.is_success:
        await response.aread()
        logger.debug(f"Request failed with HTTP {response.status_code} {response.reason_phrase}")
        raise HttpStatusError(response.status_code, response.reason_phrase, _error_body(response), response)

    if response_type is not ResponseType.STREAM:
        await response.aread()

    return await _DECODERS[response_type](response)
