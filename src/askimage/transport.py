"""Network access used by the request lifecycle.

Anything with the two coroutine methods of :class:`Transport` can be passed
to :class:`~askimage.lifecycle.RequestLifecycle`; cancellation is ordinary
task cancellation, so implementations must let ``asyncio.CancelledError``
propagate.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import mimetypes
import re
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx

from .errors import ImageProcessingError, TransportError

_DEFAULT_TIMEOUT = 60.0
# Image downloads get a shorter read budget than model calls.
_FETCH_TIMEOUT = httpx.Timeout(connect=15.0, read=30.0, write=15.0, pool=5.0)

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[^;,]*)(?P<params>(?:;[^,]*)?),(?P<payload>.*)$", re.DOTALL)


@dataclass(frozen=True)
class FetchedImage:
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: str


class Transport(Protocol):
    async def fetch_bytes(self, url: str) -> FetchedImage: ...

    async def http_call(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: str | None = None,
        timeout: float | None = None,
    ) -> HttpResponse: ...


def _bare_mime(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def parse_data_uri(uri: str) -> FetchedImage:
    match = _DATA_URI_RE.match(uri)
    if not match:
        raise ImageProcessingError("Malformed data URI")
    mime = _bare_mime(match.group("mime")) or "text/plain"
    payload = match.group("payload")
    if ";base64" in match.group("params").lower():
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ImageProcessingError("Data URI payload is not valid base64") from exc
    else:
        data = urllib.parse.unquote_to_bytes(payload)
    return FetchedImage(data=data, mime_type=mime)


class HttpxTransport:
    def __init__(
        self,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        # Swappable for httpx.MockTransport in tests.
        self._transport = transport

    def _client(self, timeout: float | httpx.Timeout) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport, follow_redirects=True)

    async def fetch_bytes(self, url: str) -> FetchedImage:
        ref = url.strip()
        if not ref:
            raise ImageProcessingError("No image reference given")
        if ref.startswith("data:"):
            return parse_data_uri(ref)
        if ref.startswith(("http://", "https://")):
            return await self._download(ref)
        if ref.startswith("file://"):
            ref = urllib.parse.unquote(urllib.parse.urlsplit(ref).path)
        return await self._read_file(Path(ref).expanduser())

    async def _download(self, url: str) -> FetchedImage:
        try:
            async with self._client(_FETCH_TIMEOUT) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.InvalidURL as exc:
            raise ImageProcessingError(f"Invalid image URL: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise TransportError(f"Image download timed out: {url}") from exc
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"HTTP {exc.response.status_code} fetching image",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Network error fetching image: {exc}") from exc
        mime = _bare_mime(response.headers.get("content-type"))
        if not mime or mime == "application/octet-stream":
            mime = mimetypes.guess_type(urllib.parse.urlsplit(url).path)[0] or mime
        return FetchedImage(data=response.content, mime_type=mime or "application/octet-stream")

    async def _read_file(self, path: Path) -> FetchedImage:
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise ImageProcessingError(f"Cannot read image file {path}: {exc}") from exc
        mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return FetchedImage(data=data, mime_type=mime)

    async def http_call(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: str | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        try:
            async with self._client(timeout or self.timeout) as client:
                response = await client.request(method, url, headers=headers, content=body)
        except httpx.InvalidURL as exc:
            raise TransportError(f"Invalid URL: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise TransportError("Request timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Network error: {exc}") from exc
        return HttpResponse(status=response.status_code, body=response.text)
