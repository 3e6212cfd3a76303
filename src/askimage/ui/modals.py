from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from textual import events
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Select, Static

from ..gemini import ConnectionCheck
from ..lifecycle import RequestLifecycle
from ..model_labels import CUSTOM_MODEL, model_options
from ..state import Cancelled, Failure, Outcome, Success


def render_outcome(outcome: Outcome) -> str:
    if isinstance(outcome, Success):
        return outcome.text
    if isinstance(outcome, Failure):
        return f"Error: {outcome.message}"
    return "Request cancelled."


class AskModal(ModalScreen[None]):
    """Question dialog for one image; closing it aborts the request."""

    def __init__(self, image_ref: str, lifecycle: RequestLifecycle, model: str) -> None:
        super().__init__()
        self.image_ref = image_ref
        self.lifecycle = lifecycle
        self.model = model
        self.last_outcome: Outcome | None = None
        self._task: asyncio.Task[None] | None = None

    def compose(self) -> ComposeResult:
        with Vertical(id="ask-modal"):
            yield Label(f"Ask about {self.image_ref}")
            yield Input(placeholder="What do you want to know about this image?", id="question")
            yield Select(model_options([self.model]), value=self.model, id="model", allow_blank=False)
            with Horizontal(id="ask-buttons"):
                yield Button("Ask", id="ask", variant="primary")
                yield Button("Close", id="close")
            yield Static("", id="response")

    def on_mount(self) -> None:
        self.set_focus(self.query_one("#question", Input))

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "ask":
            self._start()
        elif event.button.id == "close":
            self.close()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "question":
            self._start()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.close()
            event.stop()

    def _start(self) -> None:
        question = self.query_one("#question", Input).value
        model = str(self.query_one("#model", Select).value)
        outcome = self.lifecycle.submit(self.image_ref, question, model)
        self._set_busy(True)
        self._task = asyncio.create_task(self._await_outcome(outcome))

    async def _await_outcome(self, outcome: asyncio.Future[Outcome]) -> None:
        try:
            result = await outcome
        except asyncio.CancelledError:
            result = Cancelled()
        self.last_outcome = result
        if self.is_attached:
            self.query_one("#response", Static).update(render_outcome(result))
            self._set_busy(False)

    def _set_busy(self, busy: bool) -> None:
        ask = self.query_one("#ask", Button)
        ask.disabled = busy
        ask.label = "Generating..." if busy else "Ask"
        self.query_one("#close", Button).label = "Stop" if busy else "Close"
        if busy:
            self.query_one("#response", Static).update("Thinking...")

    def close(self) -> None:
        self.lifecycle.cancel()
        self.dismiss(None)


class SettingsModal(ModalScreen[dict]):
    """Settings editor, also used for first-time setup.

    *on_save* validates and stores the values and returns an error message
    on failure, which keeps the dialog open.
    """

    def __init__(
        self,
        current: dict[str, str],
        on_save: Callable[[dict[str, str]], str | None],
        on_test: Callable[[str, str], Awaitable[ConnectionCheck]],
        *,
        setup: bool = False,
    ) -> None:
        super().__init__()
        self.current = current
        self.on_save = on_save
        self.on_test = on_test
        self.setup = setup

    def compose(self) -> ComposeResult:
        model = self.current["model"]
        with Vertical(id="settings-modal"):
            yield Label("Welcome! Configure Ask Gemini" if self.setup else "Settings")
            yield Label("API base URL")
            yield Input(value=self.current["base_url"], id="base_url")
            yield Label(f"API key (current: {self.current['key_mask']})")
            yield Input(placeholder="Leave blank to keep the current key", password=True, id="api_key")
            yield Label("Default model")
            yield Select(model_options([model], include_custom=True), value=model, id="model", allow_blank=False)
            yield Input(placeholder="Custom model name", id="custom_model")
            with Horizontal(id="settings-buttons"):
                yield Button("Save", id="save", variant="primary")
                yield Button("Test connection", id="test")
                if self.setup:
                    yield Button("Skip", id="skip")
                else:
                    yield Button("Reset", id="reset", variant="error")
                    yield Button("Cancel", id="cancel")

    def on_mount(self) -> None:
        self.set_focus(self.query_one("#base_url", Input))

    def _values(self) -> dict[str, str]:
        model = str(self.query_one("#model", Select).value)
        if model == CUSTOM_MODEL:
            model = self.query_one("#custom_model", Input).value.strip()
        return {
            "base_url": self.query_one("#base_url", Input).value.strip(),
            "api_key": self.query_one("#api_key", Input).value.strip(),
            "model": model,
        }

    def _save(self) -> None:
        values = self._values()
        error = self.on_save(values)
        if error:
            self.notify(f"Settings error: {error}", severity="error")
            return
        self.dismiss({"action": "save", **values})

    async def _test(self) -> None:
        values = self._values()
        button = self.query_one("#test", Button)
        button.disabled = True
        button.label = "Testing..."
        try:
            check = await self.on_test(values["base_url"], values["api_key"])
        finally:
            button.disabled = False
            button.label = "Test connection"
        self.notify(check.detail, severity="information" if check.ok else "error")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        button_id = event.button.id
        if button_id == "save":
            self._save()
        elif button_id == "test":
            asyncio.create_task(self._test())
        elif button_id == "skip":
            self.dismiss({"action": "skip"})
        elif button_id == "reset":
            self.dismiss({"action": "reset"})
        elif button_id == "cancel":
            self.dismiss({})

    def on_key(self, event: events.Key) -> None:
        if event.key == "ctrl+s":
            self._save()
            event.stop()
            return
        if event.key == "escape":
            self.dismiss({"action": "skip"} if self.setup else {})
            event.stop()
