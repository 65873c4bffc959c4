"""Local Whisper transcription functionality."""

import logging
import threading
import time

import numpy as np
from faster_whisper import WhisperModel

from handy_voice.config import DEFAULT_COMPUTE, DEFAULT_DEVICE, DEFAULT_LOCAL_MODEL

logger = logging.getLogger(__name__)


class TranscriptionError(Exception):
    """Raised when transcription fails."""


def normalize_compute_type(device: str, compute_type: str) -> str:
    """Keep compute types compatible with the selected device."""
    ct = compute_type
    if device == "cpu" and "float16" in ct:
        ct = "int8"
    if device == "cuda" and ct in ("int8", "int8_float32", "float32"):
        ct = "float16"
    return ct


def whisper_language(selected_language: str) -> str | None:
    """Map a settings language code to what Whisper expects (None = detect)."""
    if not selected_language or selected_language == "auto":
        return None
    # Script variants are a post-processing concern; Whisper only knows "zh"
    return selected_language.split("-")[0]


def transcribe_audio(
    model: WhisperModel,
    audio: np.ndarray,
    beam_size: int = 5,
    language: str | None = None,
    vad_filter: bool = False,
    initial_prompt: str | None = None,
) -> str:
    """
    Transcribe audio using a Whisper model.

    Args:
        model: Loaded WhisperModel instance
        audio: Mono float32 samples at 16 kHz
        beam_size: Beam size for decoding (default: 5)
        language: Language code, or None to auto-detect
        vad_filter: Whether to use VAD filtering (default: False)
        initial_prompt: Optional prompt for context/style

    Returns:
        Transcribed text

    Raises:
        TranscriptionError: If transcription fails
    """
    try:
        segments, info = model.transcribe(
            audio,
            beam_size=beam_size,
            vad_filter=vad_filter,
            language=language,
            initial_prompt=initial_prompt,
        )
        return "".join(s.text for s in segments).strip()
    except Exception as e:
        raise TranscriptionError(f"Transcription failed: {e}") from e


def load_model(
    model_name: str,
    device: str,
    compute_type: str,
) -> WhisperModel:
    """
    Load a Whisper model with normalized compute type.

    Args:
        model_name: Model name (e.g., "small", "medium", "large-v3")
        device: Device ("cpu" or "cuda")
        compute_type: Compute type (will be normalized based on device)

    Returns:
        Loaded WhisperModel instance
    """
    normalized_compute = normalize_compute_type(device, compute_type)
    return WhisperModel(model_name, device=device, compute_type=normalized_compute)


class LocalTranscriber:
    """On-device recognizer with lazy, background model loading."""

    def __init__(
        self,
        model_name: str = DEFAULT_LOCAL_MODEL,
        device: str = DEFAULT_DEVICE,
        compute_type: str = DEFAULT_COMPUTE,
    ):
        self.model_name = model_name
        self.device = device
        self.compute_type = compute_type
        self._model: WhisperModel | None = None
        self._load_lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def _ensure_model(self) -> WhisperModel:
        with self._load_lock:
            if self._model is None:
                start = time.perf_counter()
                try:
                    self._model = load_model(self.model_name, self.device, self.compute_type)
                except Exception as e:
                    raise TranscriptionError(f"Failed to load model {self.model_name}: {e}") from e
                logger.info(
                    f"Model loaded: {self.model_name} on {self.device} "
                    f"({normalize_compute_type(self.device, self.compute_type)}) "
                    f"in {time.perf_counter() - start:.2f}s"
                )
            return self._model

    def initiate_model_load(self) -> None:
        """Load the model on a background thread if it is not loaded yet."""
        if self._model is not None:
            return

        def worker() -> None:
            try:
                self._ensure_model()
            except TranscriptionError as e:
                logger.error(f"Background model load failed: {e}")

        threading.Thread(target=worker, daemon=True).start()

    def transcribe(self, samples: np.ndarray, language: str | None = None) -> str:
        model = self._ensure_model()
        return transcribe_audio(model, samples, language=language)
