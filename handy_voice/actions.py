"""Shortcut actions and the dispatcher that routes hotkey events to them."""

from __future__ import annotations

import logging
import threading
import time
from types import MappingProxyType
from typing import Mapping, Protocol

import numpy as np

from handy_voice.finalizer import TextFinalizer
from handy_voice.history import HistoryError
from handy_voice.output import PasteError
from handy_voice.ports import HistoryStore, LocalRecognizer, Presenter, TextDelivery, UiExecutor
from handy_voice.presentation import OverlayKind, TrayState
from handy_voice.providers import ProviderRouter
from handy_voice.sequencer import CaptureStart, RecordingSequencer
from handy_voice.settings import Settings, SettingsStore, TranscriptionProvider
from handy_voice.transcription import TranscriptionError

logger = logging.getLogger(__name__)

NO_AUDIO_MESSAGE = "No audio captured"


class ShortcutAction(Protocol):
    def start(self, binding_id: str, shortcut: str) -> object: ...

    def stop(self, binding_id: str, shortcut: str) -> object: ...


class TranscribeAction:
    """Push-to-talk dictation: record on press, transcribe and paste on release."""

    def __init__(
        self,
        settings: SettingsStore,
        presenter: Presenter,
        sequencer: RecordingSequencer,
        recognizer: LocalRecognizer,
        router: ProviderRouter,
        finalizer: TextFinalizer,
        history: HistoryStore,
        delivery: TextDelivery,
        ui: UiExecutor,
    ):
        self._settings = settings
        self._presenter = presenter
        self._sequencer = sequencer
        self._recognizer = recognizer
        self._router = router
        self._finalizer = finalizer
        self._history = history
        self._delivery = delivery
        self._ui = ui

    def start(self, binding_id: str, shortcut: str) -> CaptureStart:
        start_time = time.perf_counter()
        logger.debug(f"TranscribeAction.start called for binding: {binding_id}")
        settings = self._settings.snapshot()

        # Load model in the background only for the local provider
        if settings.provider is TranscriptionProvider.LOCAL:
            self._recognizer.initiate_model_load()
        else:
            logger.debug(f"Skipping local model preload because provider is {settings.provider.value}")

        self._presenter.set_tray_state(TrayState.RECORDING)
        self._presenter.show_overlay(OverlayKind.RECORDING)
        result = self._sequencer.begin(binding_id, settings)

        logger.debug(f"TranscribeAction.start completed in {time.perf_counter() - start_time:.3f}s")
        return result

    def stop(self, binding_id: str, shortcut: str) -> threading.Thread:
        """Switch the UI to transcribing and hand the rest to a worker thread."""
        stop_time = time.perf_counter()
        logger.debug(f"TranscribeAction.stop called for binding: {binding_id}")
        settings = self._settings.snapshot()

        self._presenter.set_tray_state(TrayState.TRANSCRIBING)
        self._presenter.show_overlay(OverlayKind.TRANSCRIBING)
        self._sequencer.end(settings)

        worker = threading.Thread(
            target=self._process_recording, args=(binding_id, settings), daemon=True
        )
        worker.start()

        logger.debug(f"TranscribeAction.stop completed in {time.perf_counter() - stop_time:.3f}s")
        return worker

    def _process_recording(self, binding_id: str, settings: Settings) -> None:
        """Retrieve, transcribe, finalize, persist and deliver one recording.

        The UI is reset exactly once: by the delivery callback when delivery
        was handed to the UI thread, otherwise here.
        """
        handed_off = False
        try:
            samples = self._sequencer.collect(binding_id)
            if samples is None:
                logger.debug("No samples retrieved from recording stop")
                self._presenter.emit_overlay_error(NO_AUDIO_MESSAGE)
                return

            try:
                transcription = self._router.transcribe(settings, samples)
            except TranscriptionError as e:
                logger.warning(f"Transcription failed via {settings.provider.value}: {e}")
                self._presenter.emit_overlay_error(str(e))
                return

            result = self._finalizer.finalize(settings, transcription)
            if not result.final_text.strip():
                logger.debug("Transcription produced no text")
                return

            self._save_history(
                samples, transcription, result.post_processed_text, result.post_process_prompt
            )

            final_text = result.final_text
            try:
                self._ui.call_soon(lambda: self._deliver(final_text))
                handed_off = True
            except RuntimeError as e:
                logger.error(f"Failed to run paste on UI thread: {e}")
        except Exception as e:
            logger.error(f"Transcription pipeline failed: {e}", exc_info=True)
            self._presenter.emit_overlay_error(str(e))
        finally:
            if not handed_off:
                self._reset_ui()

    def _save_history(
        self,
        samples: np.ndarray,
        transcription: str,
        post_processed_text: str | None,
        post_process_prompt: str | None,
    ) -> None:
        def worker() -> None:
            try:
                self._history.save_transcription(
                    samples, transcription, post_processed_text, post_process_prompt
                )
            except HistoryError as e:
                logger.error(f"Failed to save transcription to history: {e}")

        threading.Thread(target=worker, daemon=True).start()

    def _deliver(self, text: str) -> None:
        paste_time = time.perf_counter()
        try:
            self._delivery.paste(text)
            logger.debug(f"Text pasted successfully in {time.perf_counter() - paste_time:.3f}s")
        except PasteError as e:
            logger.error(f"Failed to paste transcription: {e}")
        finally:
            self._reset_ui()

    def _reset_ui(self) -> None:
        self._presenter.hide_overlay()
        self._presenter.set_tray_state(TrayState.IDLE)


class TestAction:
    """Logs shortcut events; handy for checking a binding works."""

    __test__ = False  # not a pytest test class

    def __init__(self, app_name: str = "handy-voice"):
        self.app_name = app_name

    def start(self, binding_id: str, shortcut: str) -> None:
        logger.info(f"Shortcut ID '{binding_id}': Started - {shortcut} (App: {self.app_name})")

    def stop(self, binding_id: str, shortcut: str) -> None:
        logger.info(f"Shortcut ID '{binding_id}': Stopped - {shortcut} (App: {self.app_name})")


def build_action_map(
    transcribe: TranscribeAction, app_name: str = "handy-voice"
) -> Mapping[str, ShortcutAction]:
    """Resolve the action registry once; the result is read-only."""
    return MappingProxyType({"transcribe": transcribe, "test": TestAction(app_name)})


class ActionDispatcher:
    """Routes hotkey press/release for a binding to its action."""

    def __init__(self, actions: Mapping[str, ShortcutAction]):
        self._actions = MappingProxyType(dict(actions))

    @property
    def actions(self) -> Mapping[str, ShortcutAction]:
        return self._actions

    def _resolve(self, binding_id: str) -> ShortcutAction | None:
        action = self._actions.get(binding_id)
        if action is None:
            logger.warning(f"No action defined in ACTION_MAP for shortcut ID '{binding_id}'")
        return action

    def start(self, binding_id: str, shortcut: str) -> object:
        action = self._resolve(binding_id)
        return action.start(binding_id, shortcut) if action is not None else None

    def stop(self, binding_id: str, shortcut: str) -> object:
        action = self._resolve(binding_id)
        return action.stop(binding_id, shortcut) if action is not None else None
