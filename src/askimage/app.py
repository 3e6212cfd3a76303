from __future__ import annotations

from typing import Any

from textual import events
from textual.app import App, ComposeResult
from textual.containers import VerticalScroll
from textual.widgets import Header, Static

from .config import (
    ConfigStore,
    get_default_model,
    is_first_time_setup,
    mark_first_time_setup_completed,
    reset_settings,
    set_default_model,
)
from .credentials import CredentialResolver, mask_api_key
from .errors import InvalidFormatError
from .gemini import ConnectionCheck, check_connection
from .gestures import GestureRecognizer
from .lifecycle import RequestLifecycle
from .transport import HttpxTransport, Transport
from .ui.keybind_bar import KeybindBar
from .ui.keybinds import binding_list, render_keybinds
from .ui.modals import AskModal, SettingsModal

MOUSE_POINTER = "mouse"

APP_CSS = """
Screen { background: #111; color: #ddd; }
#gallery { height: 1fr; border: round #1fbfd1; padding: 0 1; }
ImageTile { height: 3; border: round #444; padding: 0 1; content-align: left middle; }
ImageTile:focus { border: round #925bff; }
#status { height: 1; background: #191919; color: #7ef9ff; }
#keybinds { height: 1; color: #bbb; }
#ask-modal, #settings-modal { width: 80%; height: auto; border: round #925bff; background: #1e1e1e; padding: 1 2; }
#response { min-height: 3; padding: 1 0; }
"""


class ImageTile(Static):
    """A focusable image reference that reports mouse presses as contacts."""

    can_focus = True

    def __init__(self, image_ref: str) -> None:
        super().__init__(image_ref)
        self.image_ref = image_ref

    def on_mouse_down(self, event: events.MouseDown) -> None:
        app = self.app
        if not isinstance(app, AskImageApp):
            return
        if event.button == 1:
            # Move and release must come back here even when they happen off the tile.
            self.capture_mouse()
            app.gestures.contact_start(MOUSE_POINTER, self, event.screen_x, event.screen_y)

    def on_mouse_move(self, event: events.MouseMove) -> None:
        app = self.app
        if isinstance(app, AskImageApp) and event.button:
            app.gestures.contact_move(MOUSE_POINTER)

    def on_mouse_up(self, event: events.MouseUp) -> None:
        self.release_mouse()
        app = self.app
        if isinstance(app, AskImageApp):
            app.gestures.contact_end(MOUSE_POINTER)


class AskImageApp(App):
    CSS = APP_CSS
    BINDINGS = binding_list()

    def __init__(
        self,
        images: list[str] | None = None,
        *,
        store: ConfigStore | None = None,
        resolver: CredentialResolver | None = None,
        transport: Transport | None = None,
    ) -> None:
        super().__init__()
        self.images = list(images or [])
        self.store = store or ConfigStore()
        self.resolver = resolver or CredentialResolver(self.store)
        self.transport = transport or HttpxTransport()
        self.lifecycle = RequestLifecycle(self.resolver, self.transport)
        self.gestures = GestureRecognizer(self._on_long_press, lambda target: isinstance(target, ImageTile))

    def compose(self) -> ComposeResult:
        yield Header()
        with VerticalScroll(id="gallery"):
            for image_ref in self.images:
                yield ImageTile(image_ref)
            if not self.images:
                yield Static("No images. Run: askimage ui IMAGE [IMAGE...]", id="empty")
        yield Static("", id="status")
        yield KeybindBar(id="keybinds")

    def on_mount(self) -> None:
        self.title = "Ask Gemini"
        self.update_status()
        if is_first_time_setup(self.store):
            self.open_settings(setup=True)

    def update_status(self) -> None:
        credential = self.resolver.credential
        self.query_one("#status", Static).update(
            f"model={get_default_model(self.store)} | base={self.resolver.base_url}"
            f" | key={mask_api_key(credential.api_key)} ({credential.source.value})"
        )

    def _on_long_press(self, target: Any, x: float, y: float) -> None:
        if isinstance(target, ImageTile):
            # The dialog covers the tile, so the release will not reach it.
            target.release_mouse()
            self.gestures.contact_end(MOUSE_POINTER)
            self.open_ask(target)

    def open_ask(self, tile: ImageTile) -> None:
        if isinstance(self.screen, AskModal):
            return
        self.push_screen(AskModal(tile.image_ref, self.lifecycle, get_default_model(self.store)))

    def open_settings(self, *, setup: bool = False) -> None:
        current = {
            "base_url": self.resolver.base_url,
            "model": get_default_model(self.store),
            "key_mask": mask_api_key(self.resolver.credential.api_key),
        }
        self.push_screen(
            SettingsModal(current, self._save_settings, self._test_connection, setup=setup),
            self._settings_closed,
        )

    def _save_settings(self, values: dict[str, str]) -> str | None:
        if not values.get("base_url"):
            return "Enter an API base URL"
        if not values.get("api_key") and not self.resolver.credential.configured:
            return "Enter an API key"
        try:
            self.resolver.set_base_url(values["base_url"])
            if values.get("api_key"):
                self.resolver.set_api_key(values["api_key"])
        except InvalidFormatError as exc:
            return str(exc)
        if values.get("model"):
            set_default_model(self.store, values["model"])
        return None

    async def _test_connection(self, base_url: str, api_key: str) -> ConnectionCheck:
        return await check_connection(
            self.transport,
            base_url or self.resolver.base_url,
            api_key or self.resolver.credential.api_key,
        )

    def _settings_closed(self, result: dict | None) -> None:
        action = (result or {}).get("action")
        if action == "save":
            mark_first_time_setup_completed(self.store)
            self.notify("Settings saved")
        elif action == "skip":
            mark_first_time_setup_completed(self.store)
            self.notify("Setup skipped. Press F2 to configure later.")
        elif action == "reset":
            reset_settings(self.store)
            self.resolver.reload()
            self.notify("Settings reset")
        self.update_status()

    def action_help(self) -> None:
        self.notify(render_keybinds())

    def action_settings(self) -> None:
        self.open_settings()

    def action_ask(self) -> None:
        if isinstance(self.focused, ImageTile):
            self.open_ask(self.focused)
        else:
            self.notify("Focus an image first", severity="warning")

    def action_cancel(self) -> None:
        self.lifecycle.cancel()
