"""Tray/overlay states and a headless presenter that reports them via logging."""

import logging
import threading
from enum import Enum

logger = logging.getLogger(__name__)


class TrayState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"


class OverlayKind(str, Enum):
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"


class LoggingPresenter:
    """Presenter for terminal use: keeps the current state and logs changes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.tray_state = TrayState.IDLE
        self.overlay: OverlayKind | None = None
        self.last_error: str | None = None

    def set_tray_state(self, state: TrayState) -> None:
        with self._lock:
            self.tray_state = state
        logger.info(f"Status: {state.value}")

    def show_overlay(self, kind: OverlayKind) -> None:
        with self._lock:
            self.overlay = kind
        if kind is OverlayKind.RECORDING:
            logger.info("[REC] Speak now. Release the shortcut to stop.")
        else:
            logger.info("[REC] Stopped. Transcribing...")

    def hide_overlay(self) -> None:
        with self._lock:
            self.overlay = None

    def emit_overlay_error(self, message: str) -> None:
        with self._lock:
            self.last_error = message
        logger.warning(f"Transcription error: {message}")
