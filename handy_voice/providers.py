"""Transcription provider routing: local engine, backend API or Deepgram."""

from __future__ import annotations

import base64
import io
import logging
import time
import wave
from pathlib import Path
from typing import Any

import httpx
import numpy as np

from handy_voice import config
from handy_voice.credentials import SecretCache
from handy_voice.ports import LocalRecognizer
from handy_voice.settings import Settings, TranscriptionProvider, UsageMode, resolve_secret
from handy_voice.transcription import TranscriptionError, whisper_language

logger = logging.getLogger(__name__)


class ProviderConfigurationError(TranscriptionError):
    """Remote transcription is selected but cannot be reached with current settings."""


class RemoteRequestError(TranscriptionError):
    """The HTTP request failed or its response could not be read."""


class ProviderResponseError(TranscriptionError):
    """The provider answered with an error."""


def encode_wav_bytes(samples: np.ndarray, sample_rate: int = config.SAMPLE_RATE) -> bytes:
    """Encode float samples in [-1, 1] as a mono 16-bit PCM WAV file."""
    pcm = np.clip(np.asarray(samples, dtype=np.float32) * 32767.0, -32768, 32767).astype("<i2")
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm.tobytes())
    return buffer.getvalue()


def read_wav_file(path: str | Path, sample_rate: int = config.SAMPLE_RATE) -> np.ndarray:
    """
    Read a 16-bit PCM WAV file as mono float32 samples at ``sample_rate``.

    Multi-channel audio is averaged down to mono; other rates are linearly
    resampled.

    Raises:
        ValueError: If the file is not 16-bit PCM
    """
    with wave.open(str(path), "rb") as wav:
        if wav.getsampwidth() != 2:
            raise ValueError(f"Only 16-bit PCM WAV files are supported: {path}")
        channels = wav.getnchannels()
        rate = wav.getframerate()
        frames = wav.readframes(wav.getnframes())

    samples = np.frombuffer(frames, dtype="<i2").astype(np.float32) / 32768.0
    if channels > 1:
        samples = samples.reshape(-1, channels).mean(axis=1)
    if rate != sample_rate and len(samples):
        target_len = int(round(len(samples) * sample_rate / rate))
        positions = np.linspace(0, len(samples) - 1, num=target_len)
        samples = np.interp(positions, np.arange(len(samples)), samples).astype(np.float32)
    return samples


def encode_wav_data_uri(samples: np.ndarray) -> str:
    encoded = base64.b64encode(encode_wav_bytes(samples)).decode("ascii")
    return f"data:audio/wav;base64,{encoded}"


def deepgram_model_from_settings(settings: Settings) -> str:
    """Pick the Deepgram model, falling back to nova-3 for unknown names."""
    selected = (settings.deepgram_model or "").strip()
    if not selected:
        return config.DEFAULT_DEEPGRAM_MODEL
    if selected.lower().startswith(config.DEEPGRAM_MODEL_PREFIXES):
        return selected
    logger.warning(
        f"Selected model '{selected}' is not a Deepgram model; "
        f"defaulting to {config.DEFAULT_DEEPGRAM_MODEL}"
    )
    return config.DEFAULT_DEEPGRAM_MODEL


def extract_deepgram_transcript(payload: Any) -> str | None:
    """Return ``results.channels[0].alternatives[0].transcript`` if present."""
    try:
        transcript = payload["results"]["channels"][0]["alternatives"][0]["transcript"]
    except (KeyError, IndexError, TypeError):
        return None
    return transcript if isinstance(transcript, str) else None


def extract_deepgram_duration(payload: Any) -> float | None:
    try:
        return float(payload["results"]["channels"][0]["alternatives"][0]["words"][-1]["end"])
    except (KeyError, IndexError, TypeError, ValueError):
        return None


def _optional(value: str | None) -> str | None:
    return value if value else None


class ProviderRouter:
    """Turns captured samples into raw text with the configured provider."""

    def __init__(
        self,
        recognizer: LocalRecognizer,
        secret_cache: SecretCache | None = None,
        http_client: httpx.Client | None = None,
    ):
        """
        Args:
            recognizer: Local speech recognizer used for the local provider
            secret_cache: Credential cache used when secure key storage is on
            http_client: Client for remote calls (a new one per call if None)
        """
        self._recognizer = recognizer
        self._secret_cache = secret_cache
        self._http_client = http_client

    def transcribe(self, settings: Settings, samples: np.ndarray) -> str:
        """
        Transcribe ``samples`` with the provider selected in ``settings``.

        Raises:
            TranscriptionError: If transcription fails (subclass per failure kind)
        """
        start = time.perf_counter()
        if settings.provider is TranscriptionProvider.LOCAL:
            try:
                text = self._recognizer.transcribe(
                    samples, language=whisper_language(settings.selected_language)
                )
            except TranscriptionError:
                raise
            except Exception as e:
                raise TranscriptionError(str(e)) from e
        else:
            text = self._transcribe_remote(settings, samples)

        logger.debug(
            f"Transcription completed via {settings.provider.value} in "
            f"{time.perf_counter() - start:.2f}s ({len(text)} chars)"
        )
        return text

    def deepgram_api_key(self, settings: Settings) -> str | None:
        return resolve_secret(
            settings, self._secret_cache, config.DEEPGRAM_KEY_ID, settings.deepgram_api_key
        )

    def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        if self._http_client is not None:
            return self._http_client.post(url, **kwargs)
        with httpx.Client(timeout=config.HTTP_TIMEOUT) as client:
            return client.post(url, **kwargs)

    def _transcribe_remote(self, settings: Settings, samples: np.ndarray) -> str:
        base_url = (settings.api_base_url or "").strip().rstrip("/")

        if not base_url:
            if settings.provider is TranscriptionProvider.DEEPGRAM:
                api_key = self.deepgram_api_key(settings)
                if api_key:
                    return self._transcribe_deepgram_direct(
                        samples,
                        api_key,
                        deepgram_model_from_settings(settings),
                        self._language(settings),
                    )
                raise ProviderConfigurationError(
                    "Deepgram provider requires a backend base URL or a stored Deepgram API key"
                )
            raise ProviderConfigurationError(
                "Remote transcription selected but no API base URL is configured in settings"
            )

        audio = encode_wav_data_uri(samples)
        language = self._language(settings)

        if settings.provider is TranscriptionProvider.DEEPGRAM:
            api_key = None
            if settings.usage_mode is UsageMode.OWN_KEYS:
                api_key = self.deepgram_api_key(settings)
            endpoint = f"{base_url}{config.DEEPGRAM_BACKEND_PATH}"
            body = {
                "audioBlob": audio,
                "apiKey": api_key,
                "model": deepgram_model_from_settings(settings),
                "language": language,
            }
        else:
            endpoint = f"{base_url}{config.TRANSCRIBE_PATH}"
            body = {
                "audio": audio,
                "provider": settings.provider.value,
                "model": _optional(settings.selected_model),
                "language": language,
            }
        body = {k: v for k, v in body.items() if v is not None}

        headers = {}
        token = (settings.auth_token or "").strip()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        logger.debug(
            f"Sending remote transcription request to {endpoint} "
            f"for provider '{settings.provider.value}'"
        )
        try:
            response = self._post(endpoint, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise RemoteRequestError(f"Remote transcription request failed: {e}") from e

        try:
            parsed = response.json()
        except ValueError as e:
            raise RemoteRequestError(
                f"Failed to parse remote transcription response: {e}"
            ) from e
        if not isinstance(parsed, dict):
            raise RemoteRequestError("Failed to parse remote transcription response: not an object")

        if parsed.get("success") is False or not response.is_success:
            raise ProviderResponseError(
                parsed.get("error")
                or f"Remote transcription failed with status {response.status_code}"
            )

        text = parsed.get("text")
        if text is None:
            raise ProviderResponseError("Remote transcription returned no text")
        if not isinstance(text, str):
            raise ProviderResponseError(
                f"Remote transcription returned non-string text ({type(text).__name__})"
            )
        return text

    def _transcribe_deepgram_direct(
        self,
        samples: np.ndarray,
        api_key: str,
        model: str,
        language: str | None,
    ) -> str:
        audio_bytes = encode_wav_bytes(samples)
        models_to_try = [model]
        if model.startswith(config.DEFAULT_DEEPGRAM_MODEL):
            models_to_try.append(config.DEEPGRAM_FALLBACK_MODEL)

        last_error = "Deepgram transcription failed"
        for model_name in models_to_try:
            params = {"smart_format": "true"}
            if language:
                params["language"] = language
            params["model"] = model_name

            try:
                response = self._post(
                    config.DEEPGRAM_LISTEN_URL,
                    params=params,
                    headers={"Authorization": f"Token {api_key}", "Content-Type": "audio/wav"},
                    content=audio_bytes,
                )
            except httpx.HTTPError as e:
                raise RemoteRequestError(f"Deepgram request failed: {e}") from e

            try:
                payload = response.json()
            except ValueError as e:
                raise RemoteRequestError(f"Failed to parse Deepgram response JSON: {e}") from e

            if response.is_success:
                transcript = extract_deepgram_transcript(payload)
                if transcript is None:
                    raise ProviderResponseError("Deepgram response missing transcript")
                logger.debug(
                    f"Deepgram direct transcript length: {len(transcript)}, "
                    f"duration: {extract_deepgram_duration(payload)} (model: {model_name})"
                )
                return transcript

            err_msg = "Unknown Deepgram error"
            if isinstance(payload, dict):
                err_msg = payload.get("err_msg") or payload.get("error") or err_msg
            last_error = f"Deepgram transcription failed ({response.status_code}): {err_msg}"

            if response.status_code == 403 and model_name.startswith(config.DEFAULT_DEEPGRAM_MODEL):
                logger.warning(
                    f"Deepgram denied access to model '{model_name}', "
                    f"retrying with {config.DEEPGRAM_FALLBACK_MODEL}"
                )
                continue
            raise ProviderResponseError(last_error)

        raise ProviderResponseError(last_error)

    @staticmethod
    def _language(settings: Settings) -> str | None:
        if settings.selected_language == "auto":
            return None
        return _optional(settings.selected_language)


def validate_deepgram_key(api_key: str, http_client: httpx.Client | None = None) -> None:
    """Check a Deepgram key against the projects endpoint.

    Raises:
        ProviderConfigurationError: If the key is blank or rejected
        RemoteRequestError: If Deepgram could not be reached
    """
    key = (api_key or "").strip()
    if not key:
        raise ProviderConfigurationError("Deepgram API key cannot be empty")

    headers = {"Authorization": f"Token {key}"}
    try:
        if http_client is not None:
            response = http_client.get(config.DEEPGRAM_PROJECTS_URL, headers=headers)
        else:
            with httpx.Client(timeout=config.HTTP_TIMEOUT) as client:
                response = client.get(config.DEEPGRAM_PROJECTS_URL, headers=headers)
    except httpx.HTTPError as e:
        raise RemoteRequestError(f"Deepgram request failed: {e}") from e

    if response.status_code in (401, 403):
        raise ProviderConfigurationError("Deepgram rejected the API key")
    if not response.is_success:
        raise ProviderResponseError(f"Deepgram key validation failed with status {response.status_code}")
