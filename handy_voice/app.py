"""Wiring of the dictation core and the blocking run loop."""

from __future__ import annotations

import logging
import signal
from dataclasses import dataclass

import httpx

from handy_voice.actions import ActionDispatcher, TranscribeAction, build_action_map
from handy_voice.audio import AudioRecordingManager
from handy_voice.credentials import SecretCache
from handy_voice.feedback import ToneFeedbackPlayer
from handy_voice.finalizer import TextFinalizer
from handy_voice.history import HISTORY_DIR, HistoryManager
from handy_voice.hotkeys import HotkeyManager
from handy_voice.mute import SystemAudioMute
from handy_voice.output import ClipboardPaster
from handy_voice.ports import Presenter
from handy_voice.presentation import LoggingPresenter
from handy_voice.providers import ProviderRouter
from handy_voice.sequencer import RecordingSequencer
from handy_voice.settings import SettingsStore, TranscriptionProvider
from handy_voice.transcription import LocalTranscriber
from handy_voice.ui_thread import MainThreadExecutor

logger = logging.getLogger(__name__)

APP_NAME = "handy-voice"


@dataclass
class HandyVoiceApp:
    settings: SettingsStore
    secret_cache: SecretCache
    capture: AudioRecordingManager
    recognizer: LocalTranscriber
    router: ProviderRouter
    finalizer: TextFinalizer
    presenter: Presenter
    ui: MainThreadExecutor
    dispatcher: ActionDispatcher
    http_client: httpx.Client | None = None


def build_app(
    settings_store: SettingsStore,
    secret_cache: SecretCache | None = None,
    presenter: Presenter | None = None,
    http_client: httpx.Client | None = None,
) -> HandyVoiceApp:
    """Construct every collaborator once and connect them."""
    secret_cache = secret_cache or settings_store.secret_cache or SecretCache()
    settings = settings_store.snapshot()
    presenter = presenter or LoggingPresenter()

    capture = AudioRecordingManager(
        microphone_mode=settings.microphone_mode,
        mute=SystemAudioMute(),
        should_mute=lambda: settings_store.snapshot().mute_while_recording,
    )
    recognizer = LocalTranscriber(settings.local_model, settings.device, settings.compute_type)
    router = ProviderRouter(recognizer, secret_cache=secret_cache, http_client=http_client)
    finalizer = TextFinalizer(secret_cache=secret_cache)
    ui = MainThreadExecutor()

    transcribe = TranscribeAction(
        settings=settings_store,
        presenter=presenter,
        sequencer=RecordingSequencer(capture, ToneFeedbackPlayer()),
        recognizer=recognizer,
        router=router,
        finalizer=finalizer,
        history=HistoryManager(HISTORY_DIR),
        delivery=ClipboardPaster(settings.auto_paste, settings.paste_delay),
        ui=ui,
    )
    dispatcher = ActionDispatcher(build_action_map(transcribe, APP_NAME))

    return HandyVoiceApp(
        settings=settings_store,
        secret_cache=secret_cache,
        capture=capture,
        recognizer=recognizer,
        router=router,
        finalizer=finalizer,
        presenter=presenter,
        ui=ui,
        dispatcher=dispatcher,
        http_client=http_client,
    )


def run(app: HandyVoiceApp) -> None:
    """Listen for hotkeys until interrupted; UI callbacks run on this thread."""
    settings = app.settings.snapshot()
    hotkeys = HotkeyManager(settings.bindings, app.dispatcher.start, app.dispatcher.stop)

    def handle_sigint(sig: int, frame: object) -> None:
        logger.info("Quitting...")
        app.ui.shutdown()

    signal.signal(signal.SIGINT, handle_sigint)

    app.capture.open_microphone()
    if settings.provider is TranscriptionProvider.LOCAL:
        app.recognizer.initiate_model_load()

    hotkeys.start()
    logger.info(f"Ready. Provider: {settings.provider.value}")
    try:
        app.ui.run()
    finally:
        hotkeys.stop()
        app.capture.shutdown()
        if app.http_client is not None:
            app.http_client.close()
