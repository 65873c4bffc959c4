"""Start/stop feedback sounds."""

import logging
import threading
from enum import Enum

import numpy as np
import sounddevice as sd

logger = logging.getLogger(__name__)

FEEDBACK_SAMPLE_RATE = 44100


class SoundType(str, Enum):
    START = "start"
    STOP = "stop"


# (frequency Hz, duration s) per sound; rising for start, falling for stop
TONES: dict[SoundType, list[tuple[float, float]]] = {
    SoundType.START: [(660.0, 0.06), (880.0, 0.08)],
    SoundType.STOP: [(880.0, 0.06), (660.0, 0.08)],
}


def render_tone(sound: SoundType, sample_rate: int = FEEDBACK_SAMPLE_RATE, volume: float = 0.2) -> np.ndarray:
    """Render the short chime for ``sound`` as float32 samples."""
    parts = []
    for freq, duration in TONES[sound]:
        t = np.arange(int(sample_rate * duration)) / sample_rate
        wave = np.sin(2 * np.pi * freq * t)
        # 5 ms fades avoid clicks at the edges
        fade = min(len(wave) // 2, int(sample_rate * 0.005))
        if fade:
            ramp = np.linspace(0.0, 1.0, fade)
            wave[:fade] *= ramp
            wave[-fade:] *= ramp[::-1]
        parts.append(wave)
    return (np.concatenate(parts) * volume).astype(np.float32)


class ToneFeedbackPlayer:
    """Plays synthesized chimes through the default output device."""

    def __init__(self, sample_rate: int = FEEDBACK_SAMPLE_RATE, volume: float = 0.2):
        self.sample_rate = sample_rate
        self._tones = {sound: render_tone(sound, sample_rate, volume) for sound in SoundType}

    def play_blocking(self, sound: SoundType, enabled: bool = True) -> None:
        """Play ``sound`` and wait for it to finish. No-op when disabled."""
        if not enabled:
            return
        try:
            sd.play(self._tones[sound], self.sample_rate)
            sd.wait()
        except (sd.PortAudioError, RuntimeError) as e:
            logger.warning(f"Could not play {sound.value} feedback sound: {e}")

    def play(self, sound: SoundType, enabled: bool = True) -> None:
        """Play ``sound`` on a background thread."""
        if not enabled:
            return
        threading.Thread(target=self.play_blocking, args=(sound, enabled), daemon=True).start()
