"""Microphone capture: an input stream plus binding-aware recording windows."""

import logging
import threading
from typing import Callable

import numpy as np
import sounddevice as sd

from handy_voice.config import CHUNK_MS, INPUT_CHANNELS, SAMPLE_RATE
from handy_voice.ports import MuteController
from handy_voice.settings import MicrophoneMode

logger = logging.getLogger(__name__)


class AudioRecorder:
    """Owns the sounddevice input stream and collects blocks while capturing.

    The stream and the capture window are separate: the stream can stay open
    between recordings, and blocks that arrive outside a capture are dropped.
    """

    def __init__(
        self,
        sample_rate: int = SAMPLE_RATE,
        channels: int = INPUT_CHANNELS,
        chunk_ms: float = CHUNK_MS,
    ):
        """
        Args:
            sample_rate: Sample rate in Hz (default: from config)
            channels: Number of input channels (default: from config)
            chunk_ms: Block size in milliseconds (default: from config)
        """
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms

        self._lock = threading.Lock()
        self._blocks: list[np.ndarray] = []
        self._capturing = False
        self._stream: sd.InputStream | None = None

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        if status:
            logger.debug(f"Audio status: {status}")
        with self._lock:
            if not self._capturing:
                return
            mono = indata if indata.ndim == 1 else np.mean(indata, axis=1)
            self._blocks.append(np.array(mono, dtype=np.float32))

    def open(self, device: int | None = None) -> None:
        """Open and start the input stream if it is not already running.

        Raises:
            sd.PortAudioError: If the device cannot be opened
        """
        if self._stream is not None:
            return
        stream = sd.InputStream(
            channels=self.channels,
            samplerate=self.sample_rate,
            dtype="float32",
            callback=self._audio_callback,
            blocksize=int(self.sample_rate * (self.chunk_ms / 1000.0)),
            device=device,
        )
        stream.start()
        self._stream = stream
        logger.debug(f"Input stream opened (device={device}, rate={self.sample_rate})")

    def close(self) -> None:
        """Stop and release the input stream."""
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except (sd.PortAudioError, RuntimeError) as e:
            # Already torn down by the driver
            logger.debug(f"Ignoring error while closing input stream: {e}")

    def is_open(self) -> bool:
        return self._stream is not None

    def begin_capture(self) -> None:
        """Start a fresh recording window on the open stream."""
        with self._lock:
            self._blocks = []
            self._capturing = True

    def end_capture(self) -> np.ndarray | None:
        """
        Close the recording window.

        Returns:
            The captured mono float32 samples, or None if nothing arrived
        """
        with self._lock:
            self._capturing = False
            blocks, self._blocks = self._blocks, []
        if not blocks:
            return None
        return np.concatenate(blocks)

    def shutdown(self) -> None:
        with self._lock:
            self._capturing = False
            self._blocks = []
        self.close()


class AudioRecordingManager:
    """Binding-aware capture on top of :class:`AudioRecorder`.

    Only one binding can record at a time; a second start while a capture is
    in flight is refused, which also makes repeated key-down events harmless.
    In always-on mode the input stream stays open between recordings and a
    recording is just a window over it.

    Mute is armed when a capture starts and disarmed by :meth:`remove_mute`.
    Both happen under the mute lock that :meth:`apply_mute` checks, so a
    start sound that finishes after the stop cannot mute again.
    """

    def __init__(
        self,
        recorder: AudioRecorder | None = None,
        microphone_mode: MicrophoneMode = MicrophoneMode.ON_DEMAND,
        mute: MuteController | None = None,
        should_mute: Callable[[], bool] = lambda: False,
        device: int | None = None,
    ):
        self.recorder = recorder or AudioRecorder()
        self.microphone_mode = microphone_mode
        self.device = device
        self._mute = mute
        self._should_mute = should_mute
        self._lock = threading.Lock()
        self._active_binding: str | None = None
        self._mute_lock = threading.Lock()
        self._mute_armed = False

    def open_microphone(self) -> None:
        """Open the stream up front when the microphone is always on."""
        if self.microphone_mode is MicrophoneMode.ALWAYS_ON and not self.recorder.is_open():
            self.recorder.open(self.device)
            logger.info("Microphone stream opened (always-on mode)")

    def is_recording(self) -> bool:
        with self._lock:
            return self._active_binding is not None

    def try_start_recording(self, binding_id: str) -> bool:
        with self._lock:
            if self._active_binding is not None:
                logger.debug(
                    f"Ignoring start for '{binding_id}': '{self._active_binding}' is recording"
                )
                return False
            try:
                self.recorder.open(self.device)
            except (sd.PortAudioError, RuntimeError, ValueError) as e:
                # ValueError: invalid device ID
                logger.error(f"Audio start failed: {e}", exc_info=True)
                return False
            self.recorder.begin_capture()
            self._active_binding = binding_id
            with self._mute_lock:
                self._mute_armed = True
            return True

    def stop_recording(self, binding_id: str) -> np.ndarray | None:
        with self._lock:
            if self._active_binding != binding_id:
                logger.debug(f"No recording in flight for '{binding_id}'")
                return None
            self._active_binding = None
            with self._mute_lock:
                self._mute_armed = False
            samples = self.recorder.end_capture()
            if self.microphone_mode is not MicrophoneMode.ALWAYS_ON:
                self.recorder.close()
            return samples

    def apply_mute(self) -> None:
        """Mute system output if the current capture has not begun stopping."""
        with self._mute_lock:
            if self._mute is None or not self._mute_armed or not self._should_mute():
                return
            self._mute.mute()

    def remove_mute(self) -> None:
        """Restore system output and make later :meth:`apply_mute` calls no-ops."""
        with self._mute_lock:
            self._mute_armed = False
            if self._mute is not None:
                self._mute.restore()

    def shutdown(self) -> None:
        self.remove_mute()
        self.recorder.shutdown()
