from __future__ import annotations

import base64
import binascii
import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass

import httpx

from .config import API_BASE_URL, API_KEY_ENCODED, DEFAULT_API_BASE_URL, ConfigStore
from .errors import InvalidFormatError
from .state import PLACEHOLDER_API_KEY, CredentialSource, ResolvedCredential

log = logging.getLogger("askimage.credentials")

SESSION_KEY = "askimage_api_key_temp"

# Known provider shapes: Gemini, OpenAI, Anthropic.
_PROVIDER_KEY_RES = (
    re.compile(r"^AIza[A-Za-z0-9_-]{35}$"),
    re.compile(r"^sk-[A-Za-z0-9]{48}$"),
    re.compile(r"^sk-ant-[A-Za-z0-9_-]{95}$"),
)
# Deliberately permissive catch-all for other providers and proxies.
_GENERIC_KEY_RE = re.compile(r"^[A-Za-z0-9_-]{20,}$")


def validate_key_format(candidate: object) -> bool:
    if not isinstance(candidate, str) or not candidate.strip():
        return False
    if any(pattern.fullmatch(candidate) for pattern in _PROVIDER_KEY_RES):
        return True
    return bool(_GENERIC_KEY_RE.fullmatch(candidate))


def sanitize_api_base_url(url: object) -> str | None:
    """Trim *url*, drop trailing slashes and return it if it is an absolute
    http(s) URL, else ``None``."""
    if not isinstance(url, str):
        return None
    sanitized = url.strip().rstrip("/")
    if not sanitized:
        return None
    try:
        parsed = httpx.URL(sanitized)
    except (httpx.InvalidURL, ValueError):
        log.error("Invalid URL format: %r", url)
        return None
    if parsed.scheme not in ("http", "https") or not parsed.host:
        log.error("Invalid URL format: %r", url)
        return None
    if "api" not in sanitized and "generativelanguage" not in sanitized:
        log.warning("URL does not appear to be an API endpoint: %s", sanitized)
    return sanitized


def encode_api_key(api_key: str) -> str:
    # Reversible obfuscation only, not encryption.
    return base64.b64encode(api_key.encode("utf-8")).decode("ascii")


def decode_api_key(encoded: str) -> str | None:
    try:
        return base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None


def mask_api_key(api_key: str) -> str:
    if not api_key or api_key == PLACEHOLDER_API_KEY:
        return "(not set)"
    if len(api_key) <= 8:
        return "****"
    return f"{api_key[:4]}...{api_key[-4:]}"


@dataclass(frozen=True)
class Overrides:
    """Host-level values injected from outside the settings file."""

    api_key: str = ""
    base_url: str = ""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Overrides":
        env = os.environ if environ is None else environ
        return cls(
            api_key=env.get("GEMINI_API_KEY", ""),
            base_url=env.get("GEMINI_API_BASE_URL", ""),
        )


class SessionStore:
    """Transient per-process values, dropped when the process exits."""

    def __init__(self, values: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(values or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class CredentialResolver:
    def __init__(
        self,
        store: ConfigStore,
        overrides: Overrides | None = None,
        session: SessionStore | None = None,
    ) -> None:
        self.store = store
        self.overrides = overrides if overrides is not None else Overrides.from_env()
        self.session = session if session is not None else SessionStore()
        self._credential: ResolvedCredential | None = None
        self._base_url: str | None = None

    # ------------------------------------------------------------------
    # API key
    # ------------------------------------------------------------------

    @property
    def credential(self) -> ResolvedCredential:
        """The credential in use for this process, resolved on first access."""
        if self._credential is None:
            return self.resolve_api_key()
        return self._credential

    def resolve_api_key(self) -> ResolvedCredential:
        credential = self._lookup_api_key()
        self._credential = credential
        return credential

    def _lookup_api_key(self) -> ResolvedCredential:
        if self.overrides.api_key:
            return ResolvedCredential(self.overrides.api_key, CredentialSource.OVERRIDE)

        stored = self.store.get(API_KEY_ENCODED)
        if stored:
            decoded = decode_api_key(str(stored))
            if decoded:
                return ResolvedCredential(decoded, CredentialSource.PERSISTED)
            log.warning("Failed to decode stored API key; removing it")
            self.store.delete(API_KEY_ENCODED)

        session_key = self.session.get(SESSION_KEY)
        if session_key:
            if validate_key_format(session_key):
                return ResolvedCredential(session_key, CredentialSource.SESSION_TEMP)
            self.session.remove(SESSION_KEY)
            log.warning("Invalid API key format detected in session storage; discarded")

        return ResolvedCredential(PLACEHOLDER_API_KEY, CredentialSource.PLACEHOLDER)

    def set_api_key(self, candidate: str) -> ResolvedCredential:
        api_key = candidate.strip() if isinstance(candidate, str) else ""
        if not validate_key_format(api_key):
            raise InvalidFormatError("Invalid API key format")
        self.store.set(API_KEY_ENCODED, encode_api_key(api_key))
        self._credential = ResolvedCredential(api_key, CredentialSource.PERSISTED)
        log.info("API key stored (%s)", mask_api_key(api_key))
        return self._credential

    # ------------------------------------------------------------------
    # Base URL
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        if self._base_url is None:
            return self.resolve_base_url()
        return self._base_url

    def resolve_base_url(self) -> str:
        resolved = (
            sanitize_api_base_url(self.store.get(API_BASE_URL, ""))
            or sanitize_api_base_url(self.overrides.base_url)
            or DEFAULT_API_BASE_URL
        )
        self._base_url = resolved
        return resolved

    def set_base_url(self, candidate: str) -> str:
        sanitized = sanitize_api_base_url(candidate)
        if not sanitized:
            raise InvalidFormatError("Invalid API base URL format")
        self.store.set(API_BASE_URL, sanitized)
        self._base_url = sanitized
        log.info("API base URL updated: %s", sanitized)
        return sanitized

    def reload(self) -> None:
        """Forget cached values so the next access re-reads every source."""
        self._credential = None
        self._base_url = None
