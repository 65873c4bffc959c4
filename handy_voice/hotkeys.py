"""Global push-to-talk hotkeys on top of a pynput keyboard listener."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable

from handy_voice.settings import ShortcutBinding

logger = logging.getLogger(__name__)

_ALIASES = {
    "control": "ctrl",
    "option": "alt",
    "opt": "alt",
    "command": "cmd",
    "super": "cmd",
    "win": "cmd",
    "meta": "cmd",
    "return": "enter",
    "escape": "esc",
}


class HotkeyError(Exception):
    """Raised when a shortcut string cannot be parsed or the listener fails."""


def _normalize_token(token: str) -> str:
    token = token.strip().lower()
    if token.startswith("<") and token.endswith(">"):
        token = token[1:-1].strip()
    if not token:
        return ""
    for suffix in ("_l", "_r"):
        if token.endswith(suffix) and len(token) > len(suffix):
            token = token[: -len(suffix)]
    return _ALIASES.get(token, token)


def parse_shortcut(shortcut: str) -> frozenset[str]:
    """
    Parse a shortcut like '<ctrl>+<space>' or 'ctrl+shift+d' into key tokens.

    Raises:
        HotkeyError: If the shortcut is empty or contains an empty part
    """
    parts = shortcut.split("+")
    tokens = [_normalize_token(p) for p in parts]
    if not shortcut.strip() or any(not t for t in tokens):
        raise HotkeyError(f"Invalid shortcut: {shortcut!r}")
    return frozenset(tokens)


def key_token(key: Any) -> str | None:
    """Map a pynput Key/KeyCode to the token form used by :func:`parse_shortcut`."""
    if key is None:
        return None
    name = getattr(key, "name", None)
    if name:
        return _normalize_token(name)
    char = getattr(key, "char", None)
    if char:
        return _normalize_token(char)
    return None


class HotkeyManager:
    """Tracks pressed keys and fires press/release callbacks per binding.

    A binding fires ``on_press`` once when all of its keys are down and
    ``on_release`` once when any of them is released.
    """

    def __init__(
        self,
        bindings: Iterable[ShortcutBinding],
        on_press: Callable[[str, str], object],
        on_release: Callable[[str, str], object],
        listener_factory: Callable[..., Any] | None = None,
    ):
        self._bindings: list[tuple[ShortcutBinding, frozenset[str]]] = []
        for binding in bindings:
            self._bindings.append((binding, parse_shortcut(binding.current_binding)))
        self._on_press = on_press
        self._on_release = on_release
        self._listener_factory = listener_factory
        self._listener: Any = None
        self._pressed: set[str] = set()
        self._active: set[str] = set()
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._listener is not None

    def start(self) -> None:
        if self._listener is not None:
            return
        factory = self._listener_factory
        if factory is None:
            from pynput import keyboard

            factory = keyboard.Listener
        try:
            self._listener = factory(on_press=self.handle_press, on_release=self.handle_release)
            self._listener.start()
        except Exception as e:
            self._listener = None
            raise HotkeyError(f"Failed to start keyboard listener: {e}") from e
        for binding, _ in self._bindings:
            logger.info(f"Hotkey registered: {binding.current_binding} ({binding.id})")

    def stop(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.stop()
            logger.info("Hotkey listener stopped")

    def join(self) -> None:
        if self._listener is not None:
            self._listener.join()

    def handle_press(self, key: Any) -> None:
        token = key_token(key)
        if token is None:
            return
        fired: list[ShortcutBinding] = []
        with self._lock:
            self._pressed.add(token)
            for binding, combo in self._bindings:
                if binding.id not in self._active and combo <= self._pressed:
                    self._active.add(binding.id)
                    fired.append(binding)
        for binding in fired:
            self._dispatch(self._on_press, binding)

    def handle_release(self, key: Any) -> None:
        token = key_token(key)
        if token is None:
            return
        fired: list[ShortcutBinding] = []
        with self._lock:
            self._pressed.discard(token)
            for binding, combo in self._bindings:
                if binding.id in self._active and token in combo:
                    self._active.discard(binding.id)
                    fired.append(binding)
        for binding in fired:
            self._dispatch(self._on_release, binding)

    def _dispatch(self, callback: Callable[[str, str], object], binding: ShortcutBinding) -> None:
        # Errors must not kill the listener thread
        try:
            callback(binding.id, binding.current_binding)
        except Exception as e:
            logger.error(f"Hotkey handler for '{binding.id}' failed: {e}", exc_info=True)
