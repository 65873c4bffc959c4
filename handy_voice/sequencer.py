"""Sequencing of microphone start/stop, feedback sounds and muting."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

import numpy as np

from handy_voice.config import ON_DEMAND_SETTLE_SECONDS
from handy_voice.feedback import SoundType
from handy_voice.ports import CaptureService, FeedbackPlayer
from handy_voice.settings import MicrophoneMode, Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureStart:
    """Outcome of :meth:`RecordingSequencer.begin`.

    ``feedback_done`` is set once the start sound has finished and mute has
    been applied; it is None when no feedback stage was scheduled.
    """

    recording_started: bool
    feedback_done: threading.Event | None


class RecordingSequencer:
    """Orders capture, the start/stop sounds and mute for one recording.

    Mute always follows the start sound so the sound stays audible, and
    unmute always precedes the stop sound for the same reason. A disabled
    sound is skipped but the mute step around it still runs.
    """

    def __init__(
        self,
        capture: CaptureService,
        feedback: FeedbackPlayer,
        settle_delay: float = ON_DEMAND_SETTLE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._capture = capture
        self._feedback = feedback
        self._settle_delay = settle_delay
        self._sleep = sleep

    def begin(self, binding_id: str, settings: Settings) -> CaptureStart:
        if settings.microphone_mode is MicrophoneMode.ALWAYS_ON:
            # Stream is already live; the start sound races the capture start
            logger.debug("Always-on mode: playing audio feedback immediately")
            done = self._spawn_feedback_stage(0.0, settings.audio_feedback)
            started = self._capture.try_start_recording(binding_id)
            logger.debug(f"Recording started: {started}")
            return CaptureStart(started, done)

        logger.debug("On-demand mode: starting recording first, then audio feedback")
        start = time.perf_counter()
        if not self._capture.try_start_recording(binding_id):
            logger.debug("Failed to start recording")
            return CaptureStart(False, None)
        logger.debug(f"Recording started in {time.perf_counter() - start:.3f}s")
        return CaptureStart(True, self._spawn_feedback_stage(self._settle_delay, settings.audio_feedback))

    def _spawn_feedback_stage(self, delay: float, audio_feedback: bool) -> threading.Event:
        done = threading.Event()

        def stage() -> None:
            try:
                if delay:
                    self._sleep(delay)
                self._feedback.play_blocking(SoundType.START, enabled=audio_feedback)
                self._capture.apply_mute()
            except Exception as e:
                logger.error(f"Start feedback/mute sequence failed: {e}", exc_info=True)
            finally:
                done.set()

        threading.Thread(target=stage, daemon=True).start()
        return done

    def end(self, settings: Settings) -> None:
        """Unmute, then play the stop sound without waiting for it."""
        self._capture.remove_mute()
        self._feedback.play(SoundType.STOP, enabled=settings.audio_feedback)

    def collect(self, binding_id: str) -> np.ndarray | None:
        """Finish the capture for ``binding_id``; None when nothing was recorded."""
        start = time.perf_counter()
        samples = self._capture.stop_recording(binding_id)
        if samples is None or len(samples) == 0:
            return None
        logger.debug(
            f"Recording stopped and samples retrieved in {time.perf_counter() - start:.3f}s, "
            f"sample count: {len(samples)}"
        )
        return samples
