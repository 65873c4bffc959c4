"""Interfaces for the collaborators the dictation core drives.

The core only sequences these services; capture, recognition, history,
paste and presentation each have a default adapter elsewhere in the package
and can be swapped for anything matching these protocols.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Protocol, runtime_checkable

import numpy as np

if TYPE_CHECKING:
    from handy_voice.feedback import SoundType
    from handy_voice.presentation import OverlayKind, TrayState


@runtime_checkable
class Presenter(Protocol):
    """Tray icon and recording overlay. Calls are fire-and-forget."""

    def set_tray_state(self, state: TrayState) -> None: ...

    def show_overlay(self, kind: OverlayKind) -> None: ...

    def hide_overlay(self) -> None: ...

    def emit_overlay_error(self, message: str) -> None: ...


@runtime_checkable
class CaptureService(Protocol):
    """Microphone capture keyed by the binding that started it."""

    def try_start_recording(self, binding_id: str) -> bool:
        """Start capturing for ``binding_id``; False if already busy or failed."""

    def stop_recording(self, binding_id: str) -> np.ndarray | None:
        """Finish the capture started by ``binding_id`` and return its samples."""

    def apply_mute(self) -> None:
        """Mute output for the capture in flight; a no-op once :meth:`remove_mute` ran."""

    def remove_mute(self) -> None:
        """Restore output and disarm any pending :meth:`apply_mute`."""


@runtime_checkable
class MuteController(Protocol):
    """System output mute that remembers and restores the prior state."""

    def mute(self) -> None: ...

    def restore(self) -> None: ...


@runtime_checkable
class LocalRecognizer(Protocol):
    """On-device speech recognition."""

    def initiate_model_load(self) -> None:
        """Warm the model up in the background; returns immediately."""

    def transcribe(self, samples: np.ndarray, language: str | None = None) -> str: ...


@runtime_checkable
class HistoryStore(Protocol):
    def save_transcription(
        self,
        samples: np.ndarray,
        transcription_text: str,
        post_processed_text: str | None = None,
        post_process_prompt: str | None = None,
    ) -> None: ...


@runtime_checkable
class TextDelivery(Protocol):
    """Puts text into the active application. Must run on the UI thread."""

    def paste(self, text: str) -> None: ...


@runtime_checkable
class FeedbackPlayer(Protocol):
    def play(self, sound: SoundType, enabled: bool = True) -> None:
        """Start playing ``sound`` and return immediately."""

    def play_blocking(self, sound: SoundType, enabled: bool = True) -> None:
        """Play ``sound`` and return once playback has finished."""


@runtime_checkable
class UiExecutor(Protocol):
    """The single execution context allowed to touch UI and paste."""

    def call_soon(self, callback: Callable[[], None]) -> None: ...
