"""Long-press detection for pointer contacts on images.

Each contact runs its own small state machine::

    Idle --start on image--> Armed --deadline--> Fired
                               |
                               +--move/end-----> Cancelled

Fired and Cancelled are terminal; a new contact starts over from Idle.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Hashable
from typing import Any, Protocol

from .state import GesturePhase, GestureState

log = logging.getLogger("askimage.gestures")

LONG_PRESS_DURATION = 0.5


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


LongPressCallback = Callable[[Any, float, float], None]
CallLater = Callable[[float, Callable[[], None]], TimerHandle]


class GestureRecognizer:
    def __init__(
        self,
        on_long_press: LongPressCallback,
        is_image: Callable[[Any], bool],
        *,
        duration: float = LONG_PRESS_DURATION,
        call_later: CallLater | None = None,
    ) -> None:
        self.on_long_press = on_long_press
        self.is_image = is_image
        self.duration = duration
        self._call_later = call_later
        self._contacts: dict[Hashable, GestureState] = {}
        # Set when a long press fires; consumed by the next context-menu
        # event even if that event targets another element.
        self._suppress_next_menu = False

    def _schedule(self, callback: Callable[[], None]) -> TimerHandle:
        if self._call_later is not None:
            return self._call_later(self.duration, callback)
        return asyncio.get_running_loop().call_later(self.duration, callback)

    def state(self, pointer_id: Hashable) -> GestureState | None:
        return self._contacts.get(pointer_id)

    @property
    def active_contacts(self) -> int:
        return len(self._contacts)

    def contact_start(self, pointer_id: Hashable, target: Any, x: float, y: float) -> bool:
        """Arm a long-press timer if *target* is an image; return whether armed."""
        previous = self._contacts.pop(pointer_id, None)
        if previous is not None:
            self._clear(previous, GesturePhase.CANCELLED)
        if not self.is_image(target):
            return False
        state = GestureState(target=target, x=x, y=y, phase=GesturePhase.ARMED)
        state.timer = self._schedule(lambda: self._fire(pointer_id, state))
        self._contacts[pointer_id] = state
        return True

    def contact_move(self, pointer_id: Hashable) -> None:
        state = self._contacts.get(pointer_id)
        if state is not None and state.armed:
            self._clear(state, GesturePhase.CANCELLED)

    def contact_end(self, pointer_id: Hashable) -> None:
        state = self._contacts.pop(pointer_id, None)
        if state is not None and state.armed:
            self._clear(state, GesturePhase.CANCELLED)

    def contact_cancel(self, pointer_id: Hashable) -> None:
        self.contact_end(pointer_id)

    def reset(self) -> None:
        for state in self._contacts.values():
            if state.armed:
                self._clear(state, GesturePhase.CANCELLED)
        self._contacts.clear()
        self._suppress_next_menu = False

    def suppress_native_menu(self, target: Any) -> bool:
        """Return True when the host must swallow a context-menu event for *target*."""
        if self._suppress_next_menu:
            self._suppress_next_menu = False
            return True
        if self.is_image(target):
            return True
        return any(state.fired_long_press for state in self._contacts.values())

    def _clear(self, state: GestureState, phase: GesturePhase) -> None:
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None
        state.phase = phase

    def _fire(self, pointer_id: Hashable, state: GestureState) -> None:
        # A stale timer must not fire for a contact that was replaced or ended.
        if self._contacts.get(pointer_id) is not state or not state.armed:
            return
        state.timer = None
        state.phase = GesturePhase.FIRED
        self._suppress_next_menu = True
        log.debug("Long press on %r at (%s, %s)", state.target, state.x, state.y)
        self.on_long_press(state.target, state.x, state.y)
