from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

PLACEHOLDER_API_KEY = "YOUR_GEMINI_API_KEY"


class FailureKind(str, Enum):
    INVALID_FORMAT = "InvalidFormat"
    UNCONFIGURED = "Unconfigured"
    EMPTY_INPUT = "EmptyInput"
    IMAGE_PROCESSING = "ImageProcessing"
    NETWORK = "Network"
    API_ERROR = "ApiError"
    INVALID_CREDENTIAL = "InvalidCredential"
    NO_CONTENT = "NoContent"


class CredentialSource(str, Enum):
    OVERRIDE = "override"
    PERSISTED = "persisted"
    SESSION_TEMP = "sessionTemp"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class ResolvedCredential:
    api_key: str
    source: CredentialSource

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and self.api_key != PLACEHOLDER_API_KEY


@dataclass(frozen=True)
class Success:
    text: str


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str
    status_code: int | None = None


@dataclass(frozen=True)
class Cancelled:
    reason: str = "cancelled"


Outcome = Union[Success, Failure, Cancelled]


class GesturePhase(str, Enum):
    IDLE = "Idle"
    ARMED = "Armed"
    FIRED = "Fired"
    CANCELLED = "Cancelled"

    @property
    def terminal(self) -> bool:
        return self in (GesturePhase.FIRED, GesturePhase.CANCELLED)


@dataclass(slots=True)
class GestureState:
    target: Any = None
    x: float = 0.0
    y: float = 0.0
    phase: GesturePhase = GesturePhase.IDLE
    timer: Any = None

    @property
    def armed(self) -> bool:
        return self.phase is GesturePhase.ARMED

    @property
    def fired_long_press(self) -> bool:
        return self.phase is GesturePhase.FIRED


@dataclass(slots=True)
class PendingRequest:
    id: str
    image_ref: str
    question: str
    model: str
    outcome: asyncio.Future[Outcome]
    task: asyncio.Task[Outcome] | None = None

    def resolve(self, result: Outcome) -> bool:
        """Deliver *result* unless an outcome was already delivered."""
        if self.outcome.done():
            return False
        self.outcome.set_result(result)
        return True
