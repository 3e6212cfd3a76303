from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
import uuid

from .config import get_default_model
from .credentials import CredentialResolver
from .errors import ImageProcessingError, TransportError
from .gemini import build_request_body, generate_content_url, map_response
from .state import Cancelled, Failure, FailureKind, Outcome, PendingRequest
from .transport import FetchedImage, HttpxTransport, Transport

log = logging.getLogger("askimage.lifecycle")

_MIME_RE = re.compile(r"^[a-zA-Z0-9]+/[a-zA-Z0-9\-.+]+$")

EMPTY_INPUT_MESSAGE = "Please enter a question."
UNCONFIGURED_MESSAGE = "No API key is configured. Open Settings or set GEMINI_API_KEY."
IMAGE_PROCESSING_MESSAGE = "Could not process the image. Check that the image link is valid."
NETWORK_MESSAGE = "Network connection failed. Could not reach the Gemini API."


def encode_image(image: FetchedImage) -> tuple[str, str]:
    """Return ``(base64_payload, mime_type)`` for *image*."""
    if not image.data:
        raise ImageProcessingError("Image is empty")
    if not _MIME_RE.fullmatch(image.mime_type or ""):
        raise ImageProcessingError(f"Unusable MIME type: {image.mime_type!r}")
    return base64.b64encode(image.data).decode("ascii"), image.mime_type


class RequestLifecycle:
    """Owns the single in-flight question; a new submission cancels the last."""

    def __init__(
        self,
        resolver: CredentialResolver,
        transport: Transport | None = None,
        *,
        timeout: float = 60.0,
    ) -> None:
        self.resolver = resolver
        self.transport = transport or HttpxTransport(timeout=timeout)
        self.timeout = timeout
        self._pending: PendingRequest | None = None

    @property
    def pending(self) -> PendingRequest | None:
        return self._pending

    @property
    def busy(self) -> bool:
        return self._pending is not None

    def submit(self, image_ref: str, question: str, model: str | None = None) -> asyncio.Future[Outcome]:
        """Start answering *question* about *image_ref*.

        The returned future resolves exactly once with :class:`Success`,
        :class:`Failure` or :class:`Cancelled`. Cancelling the future aborts
        the request.
        """
        loop = asyncio.get_running_loop()
        outcome: asyncio.Future[Outcome] = loop.create_future()
        if not question or not question.strip():
            return self._reject(outcome, Failure(FailureKind.EMPTY_INPUT, EMPTY_INPUT_MESSAGE))
        credential = self.resolver.credential
        if not credential.configured:
            return self._reject(outcome, Failure(FailureKind.UNCONFIGURED, UNCONFIGURED_MESSAGE))

        self.cancel()
        pending = PendingRequest(
            id=uuid.uuid4().hex[:12],
            image_ref=image_ref,
            question=question,
            model=model or get_default_model(self.resolver.store),
            outcome=outcome,
        )
        log.info(
            "Request %s initiated: model=%s gemini_key=%s",
            pending.id,
            pending.model,
            credential.api_key.startswith("AIza"),
        )
        self._pending = pending
        pending.task = loop.create_task(self._run(pending, credential.api_key, self.resolver.base_url))
        pending.task.add_done_callback(lambda task: self._settle(pending, task))
        outcome.add_done_callback(lambda fut: self._observer_done(pending, fut))
        return outcome

    async def ask(self, image_ref: str, question: str, model: str | None = None) -> Outcome:
        return await self.submit(image_ref, question, model)

    def cancel(self) -> None:
        pending = self._pending
        if pending is None:
            return
        self._pending = None
        if pending.task is not None:
            pending.task.cancel()
        if pending.resolve(Cancelled()):
            log.info("Request %s cancelled", pending.id)

    def _reject(self, outcome: asyncio.Future[Outcome], failure: Failure) -> asyncio.Future[Outcome]:
        log.warning("Request rejected: %s (%s)", failure.kind.value, failure.message)
        outcome.set_result(failure)
        return outcome

    async def _run(self, pending: PendingRequest, api_key: str, base_url: str) -> Outcome:
        try:
            image = await self.transport.fetch_bytes(pending.image_ref)
            payload, mime_type = encode_image(image)
        except (ImageProcessingError, TransportError) as exc:
            log.warning("Image processing failed for request %s: %s", pending.id, exc)
            return Failure(FailureKind.IMAGE_PROCESSING, IMAGE_PROCESSING_MESSAGE)

        body = build_request_body(pending.question, payload, mime_type)
        try:
            response = await self.transport.http_call(
                "POST",
                generate_content_url(base_url, pending.model, api_key),
                headers={"Content-Type": "application/json"},
                body=json.dumps(body),
                timeout=self.timeout,
            )
        except TransportError as exc:
            log.warning("Network error for request %s: %s", pending.id, exc)
            return Failure(FailureKind.NETWORK, NETWORK_MESSAGE, status_code=exc.status_code)
        return map_response(response.status, response.body)

    def _settle(self, pending: PendingRequest, task: asyncio.Task[Outcome]) -> None:
        if self._pending is pending:
            self._pending = None
        if task.cancelled():
            result: Outcome = Cancelled()
        elif task.exception() is not None:
            exc = task.exception()
            log.error("Request %s crashed: %s", pending.id, exc, exc_info=exc)
            result = Failure(FailureKind.API_ERROR, f"Unexpected error: {exc}")
        else:
            result = task.result()
        # A cancelled request already delivered Cancelled; late results are dropped.
        if pending.resolve(result) and isinstance(result, Failure):
            log.warning("Request %s failed: %s (%s)", pending.id, result.kind.value, result.message)

    def _observer_done(self, pending: PendingRequest, outcome: asyncio.Future[Outcome]) -> None:
        if not outcome.cancelled():
            return
        if self._pending is pending:
            self._pending = None
        if pending.task is not None and not pending.task.done():
            pending.task.cancel()
