"""Deliver text to the active application via clipboard and paste keystroke."""

import logging
import platform
import time

import pyperclip

try:
    import pyautogui

    pyautogui.FAILSAFE = False
except Exception:  # pragma: no cover - needs a display server
    pyautogui = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class PasteError(Exception):
    """Raised when text could not be delivered."""


def paste_hotkey() -> tuple[str, str]:
    return ("command", "v") if platform.system() == "Darwin" else ("ctrl", "v")


class ClipboardPaster:
    """Copies text to the clipboard and optionally sends the paste shortcut."""

    def __init__(self, auto_paste: bool = True, paste_delay: float = 0.15):
        self.auto_paste = auto_paste
        self.paste_delay = paste_delay

    def paste(self, text: str) -> None:
        try:
            pyperclip.copy(text)
        except (pyperclip.PyperclipException, RuntimeError) as e:
            # PyperclipException: Clipboard access errors
            # RuntimeError: Other clipboard-related errors
            raise PasteError(f"Clipboard copy failed: {e}") from e

        if not self.auto_paste:
            logger.info("(copied to clipboard)")
            return
        if pyautogui is None:
            raise PasteError("pyautogui not available; text was copied but not pasted")

        time.sleep(self.paste_delay)
        try:
            pyautogui.hotkey(*paste_hotkey())
        except (pyautogui.FailSafeException, pyautogui.PyAutoGUIException) as e:
            # FailSafeException: Mouse moved to corner (failsafe triggered)
            # PyAutoGUIException: Other pyautogui errors
            raise PasteError(f"Auto-paste failed: {e}") from e
