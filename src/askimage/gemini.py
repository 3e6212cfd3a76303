"""Gemini ``generateContent`` wire format and response mapping."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .errors import TransportError
from .state import PLACEHOLDER_API_KEY, Failure, FailureKind, Success
from .transport import Transport

PLAIN_TEXT_INSTRUCTION = (
    "[SYSTEM] The text above is the user's request. Do not use markdown or LaTeX "
    "in your answer. Reply in plain text only."
)
THINKING_BUDGET = 5000
CONNECTION_TEST_TIMEOUT = 10.0

INVALID_KEY_MARKER = "API key not valid"
INVALID_KEY_MESSAGE = "The API key is invalid or has expired. Check it in Settings."
NO_CONTENT_MESSAGE = "The model returned no content, possibly because of safety settings."
UNPARSEABLE = "unparseable"
UNKNOWN_API_ERROR = "Unknown API error"


def generate_content_url(base_url: str, model: str, api_key: str) -> str:
    return f"{base_url}/models/{model}:generateContent?key={api_key}"


def models_url(base_url: str, api_key: str) -> str:
    return f"{base_url}/models?key={api_key}"


def build_request_body(question: str, image_b64: str, mime_type: str) -> dict[str, Any]:
    return {
        "contents": [
            {
                "parts": [
                    {"text": question + PLAIN_TEXT_INSTRUCTION},
                    {"inline_data": {"mime_type": mime_type, "data": image_b64}},
                ]
            }
        ],
        "generationConfig": {"thinkingConfig": {"thinkingBudget": THINKING_BUDGET}},
    }


def extract_answer(payload: object) -> str:
    """Return the text of the first candidate that has any, else ``""``."""
    if not isinstance(payload, dict):
        return ""
    candidates = payload.get("candidates")
    if not isinstance(candidates, list):
        return ""
    for candidate in candidates:
        content = candidate.get("content") if isinstance(candidate, dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            continue
        text = "".join(
            part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
        if text:
            return text
    return ""


def map_response(status: int, body: str) -> Success | Failure:
    parsed = True
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        parsed = False
        payload = None
    if status != 200:
        if not parsed:
            return Failure(FailureKind.API_ERROR, UNPARSEABLE, status_code=status)
        error = payload.get("error") if isinstance(payload, dict) else None
        message = str((error.get("message") if isinstance(error, dict) else None) or UNKNOWN_API_ERROR)
        if INVALID_KEY_MARKER in message:
            return Failure(FailureKind.INVALID_CREDENTIAL, INVALID_KEY_MESSAGE, status_code=status)
        return Failure(FailureKind.API_ERROR, message, status_code=status)
    if not isinstance(payload, dict):
        return Failure(FailureKind.API_ERROR, "Could not parse the API response.", status_code=status)
    text = extract_answer(payload)
    if not text:
        return Failure(FailureKind.NO_CONTENT, NO_CONTENT_MESSAGE, status_code=status)
    return Success(text)


@dataclass(frozen=True)
class ConnectionCheck:
    ok: bool
    detail: str


async def check_connection(transport: Transport, base_url: str, api_key: str) -> ConnectionCheck:
    """List models at *base_url* to confirm the endpoint and key work together."""
    if not base_url:
        return ConnectionCheck(False, "Enter an API base URL first")
    if not api_key or api_key == PLACEHOLDER_API_KEY:
        return ConnectionCheck(False, "Set a valid API key first")
    try:
        response = await transport.http_call("GET", models_url(base_url, api_key), timeout=CONNECTION_TEST_TIMEOUT)
    except TransportError as exc:
        return ConnectionCheck(False, str(exc))
    if response.status == 200:
        return ConnectionCheck(True, "API connection test succeeded")
    return ConnectionCheck(False, f"HTTP {response.status}")
