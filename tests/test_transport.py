import asyncio
import base64
import sys
import tempfile
import unittest
from pathlib import Path

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from askimage.errors import ImageProcessingError, TransportError
from askimage.transport import HttpxTransport, parse_data_uri


class TestDataUri(unittest.TestCase):
    def test_base64(self) -> None:
        image = parse_data_uri("data:image/png;base64," + base64.b64encode(b"png-bytes").decode())
        self.assertEqual(image.data, b"png-bytes")
        self.assertEqual(image.mime_type, "image/png")

    def test_percent_encoded(self) -> None:
        image = parse_data_uri("data:image/svg+xml,%3Csvg%3E")
        self.assertEqual(image.data, b"<svg>")
        self.assertEqual(image.mime_type, "image/svg+xml")

    def test_malformed(self) -> None:
        with self.assertRaises(ImageProcessingError):
            parse_data_uri("data:image/png;base64")
        with self.assertRaises(ImageProcessingError):
            parse_data_uri("data:image/png;base64,@@@")


class TestHttpxTransport(unittest.IsolatedAsyncioTestCase):
    def transport(self, handler) -> HttpxTransport:
        return HttpxTransport(timeout=5.0, transport=httpx.MockTransport(handler))

    async def test_fetch_url(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            self.assertEqual(str(request.url), "https://img.example/cat")
            return httpx.Response(200, content=b"jpeg", headers={"content-type": "image/jpeg; charset=binary"})

        image = await self.transport(handler).fetch_bytes("https://img.example/cat")
        self.assertEqual(image.data, b"jpeg")
        self.assertEqual(image.mime_type, "image/jpeg")

    async def test_fetch_url_guesses_mime_from_path(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"png", headers={"content-type": "application/octet-stream"})

        image = await self.transport(handler).fetch_bytes("https://img.example/a/cat.png?size=2")
        self.assertEqual(image.mime_type, "image/png")

    async def test_fetch_http_error(self) -> None:
        transport = self.transport(lambda request: httpx.Response(404))
        with self.assertRaises(TransportError) as ctx:
            await transport.fetch_bytes("https://img.example/missing.png")
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_fetch_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with self.assertRaises(TransportError):
            await self.transport(handler).fetch_bytes("https://img.example/cat.png")

    async def test_fetch_malformed_url(self) -> None:
        transport = self.transport(lambda request: httpx.Response(200, content=b"png"))
        for url in ("http://example.com:abc/a.png", "http://[::1/a.png"):
            with self.assertRaises(ImageProcessingError):
                await transport.fetch_bytes(url)

    async def test_fetch_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "photo.jpg"
            path.write_bytes(b"jpeg-bytes")
            transport = HttpxTransport()
            image = await transport.fetch_bytes(str(path))
            self.assertEqual(image.data, b"jpeg-bytes")
            self.assertEqual(image.mime_type, "image/jpeg")
            image = await transport.fetch_bytes(path.as_uri())
            self.assertEqual(image.data, b"jpeg-bytes")

    async def test_fetch_missing_file(self) -> None:
        with self.assertRaises(ImageProcessingError):
            await HttpxTransport().fetch_bytes("/nonexistent/dir/cat.png")
        with self.assertRaises(ImageProcessingError):
            await HttpxTransport().fetch_bytes("   ")

    async def test_http_call_returns_non_200(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(403, text='{"error": {"message": "API key not valid"}}')

        response = await self.transport(handler).http_call(
            "POST",
            "https://api.example/models/m:generateContent?key=K",
            headers={"Content-Type": "application/json"},
            body='{"a": 1}',
        )
        self.assertEqual(response.status, 403)
        self.assertIn("API key not valid", response.body)
        self.assertEqual(seen[0].method, "POST")
        self.assertEqual(seen[0].content, b'{"a": 1}')
        self.assertEqual(seen[0].headers["content-type"], "application/json")

    async def test_http_call_malformed_url(self) -> None:
        transport = self.transport(lambda request: httpx.Response(200))
        with self.assertRaises(TransportError):
            await transport.http_call("GET", "http://a:abc/models?key=K")

    async def test_http_call_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with self.assertRaises(TransportError) as ctx:
            await self.transport(handler).http_call("GET", "https://api.example/models")
        self.assertIn("timed out", str(ctx.exception))

    async def test_http_call_is_cancellable(self) -> None:
        started = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            started.set()
            await asyncio.sleep(10)
            return httpx.Response(200)

        task = asyncio.create_task(self.transport(handler).http_call("GET", "https://api.example/models"))
        await started.wait()
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
