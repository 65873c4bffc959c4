"""Tests for transcription provider routing."""

import base64
import io
import json
import wave
from unittest.mock import MagicMock

import httpx
import numpy as np
import pytest

from handy_voice.providers import (
    ProviderConfigurationError,
    ProviderResponseError,
    ProviderRouter,
    RemoteRequestError,
    deepgram_model_from_settings,
    encode_wav_bytes,
    encode_wav_data_uri,
    extract_deepgram_transcript,
    read_wav_file,
    validate_deepgram_key,
)
from handy_voice.settings import Settings, TranscriptionProvider, UsageMode
from handy_voice.transcription import TranscriptionError

SAMPLES = np.array([0.0, 0.5, -0.5, 1.0], dtype=np.float32)


def deepgram_payload(transcript: str) -> dict:
    return {"results": {"channels": [{"alternatives": [{"transcript": transcript, "words": []}]}]}}


class RecordingTransport:
    """Mock transport that records requests and replays queued responses."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


def make_router(transport: RecordingTransport | None = None, recognizer=None, secret_cache=None):
    recognizer = recognizer or MagicMock()
    client = transport.client() if transport is not None else None
    return ProviderRouter(recognizer, secret_cache=secret_cache, http_client=client)


class TestLocalProvider:
    """Local recognition never touches the network."""

    def test_local_uses_recognizer(self):
        transport = RecordingTransport()
        recognizer = MagicMock()
        recognizer.transcribe.return_value = "local text"
        router = make_router(transport, recognizer)

        text = router.transcribe(Settings(selected_language="zh-Hans"), SAMPLES)

        assert text == "local text"
        recognizer.transcribe.assert_called_once_with(SAMPLES, language="zh")
        assert transport.requests == []

    def test_local_auto_language_is_none(self):
        recognizer = MagicMock()
        recognizer.transcribe.return_value = ""
        make_router(recognizer=recognizer).transcribe(Settings(), SAMPLES)
        recognizer.transcribe.assert_called_once_with(SAMPLES, language=None)

    def test_local_failure_is_wrapped(self):
        recognizer = MagicMock()
        recognizer.transcribe.side_effect = RuntimeError("model exploded")
        with pytest.raises(TranscriptionError, match="model exploded"):
            make_router(recognizer=recognizer).transcribe(Settings(), SAMPLES)


class TestConfigurationErrors:
    """Misconfiguration fails before any HTTP call."""

    def test_openai_without_base_url(self):
        transport = RecordingTransport()
        settings = Settings(provider=TranscriptionProvider.OPENAI)

        with pytest.raises(ProviderConfigurationError, match="no API base URL"):
            make_router(transport).transcribe(settings, SAMPLES)
        assert transport.requests == []

    def test_deepgram_without_url_or_key(self):
        transport = RecordingTransport()
        settings = Settings(
            provider=TranscriptionProvider.DEEPGRAM, use_secure_key_storage=False
        )

        with pytest.raises(ProviderConfigurationError, match="requires a backend base URL"):
            make_router(transport).transcribe(settings, SAMPLES)
        assert transport.requests == []

    def test_deepgram_secure_key_missing(self):
        cache = MagicMock()
        cache.fetch.return_value = None
        settings = Settings(provider=TranscriptionProvider.DEEPGRAM, deepgram_api_key="ignored")

        with pytest.raises(ProviderConfigurationError):
            make_router(RecordingTransport(), secret_cache=cache).transcribe(settings, SAMPLES)
        cache.fetch.assert_called_once_with("deepgram")


class TestBackendTranscription:
    """Requests against the configured backend."""

    def test_openai_compatible_success(self):
        transport = RecordingTransport(httpx.Response(200, json={"text": "hello", "success": True}))
        settings = Settings(
            provider=TranscriptionProvider.OPENAI,
            api_base_url="https://backend.example/",
            auth_token="tok",
            selected_model="whisper-1",
            selected_language="fr",
        )

        assert make_router(transport).transcribe(settings, SAMPLES) == "hello"

        request = transport.requests[0]
        assert str(request.url) == "https://backend.example/api/transcribe"
        assert request.headers["Authorization"] == "Bearer tok"
        body = json.loads(request.content)
        assert body["provider"] == "openai"
        assert body["model"] == "whisper-1"
        assert body["language"] == "fr"
        assert body["audio"].startswith("data:audio/wav;base64,")

    def test_optional_fields_are_omitted(self):
        transport = RecordingTransport(httpx.Response(200, json={"text": "hi"}))
        settings = Settings(provider=TranscriptionProvider.OPENAI, api_base_url="https://b")

        make_router(transport).transcribe(settings, SAMPLES)

        request = transport.requests[0]
        assert "Authorization" not in request.headers
        assert set(json.loads(request.content)) == {"audio", "provider"}

    def test_error_field_is_surfaced(self):
        transport = RecordingTransport(
            httpx.Response(402, json={"success": False, "error": "Out of credits"})
        )
        settings = Settings(provider=TranscriptionProvider.OPENAI, api_base_url="https://b")

        with pytest.raises(ProviderResponseError, match="Out of credits"):
            make_router(transport).transcribe(settings, SAMPLES)

    def test_status_error_without_message(self):
        transport = RecordingTransport(httpx.Response(500, json={}))
        settings = Settings(provider=TranscriptionProvider.OPENAI, api_base_url="https://b")

        with pytest.raises(ProviderResponseError, match="failed with status 500"):
            make_router(transport).transcribe(settings, SAMPLES)

    def test_missing_text(self):
        transport = RecordingTransport(httpx.Response(200, json={"success": True}))
        settings = Settings(provider=TranscriptionProvider.OPENAI, api_base_url="https://b")

        with pytest.raises(ProviderResponseError, match="returned no text"):
            make_router(transport).transcribe(settings, SAMPLES)

    @pytest.mark.parametrize("text", [5, ["a"], {"t": "x"}])
    def test_non_string_text(self, text):
        transport = RecordingTransport(httpx.Response(200, json={"success": True, "text": text}))
        settings = Settings(provider=TranscriptionProvider.OPENAI, api_base_url="https://b")

        with pytest.raises(ProviderResponseError, match="non-string text"):
            make_router(transport).transcribe(settings, SAMPLES)

    def test_unparsable_body(self):
        transport = RecordingTransport(httpx.Response(200, content=b"<html>"))
        settings = Settings(provider=TranscriptionProvider.OPENAI, api_base_url="https://b")

        with pytest.raises(RemoteRequestError, match="Failed to parse"):
            make_router(transport).transcribe(settings, SAMPLES)

    def test_connection_failure(self):
        def fail(request):
            raise httpx.ConnectError("refused", request=request)

        router = ProviderRouter(
            MagicMock(), http_client=httpx.Client(transport=httpx.MockTransport(fail))
        )
        settings = Settings(provider=TranscriptionProvider.OPENAI, api_base_url="https://b")

        with pytest.raises(RemoteRequestError, match="request failed"):
            router.transcribe(settings, SAMPLES)

    @pytest.mark.parametrize("usage_mode,expect_key", [(UsageMode.OWN_KEYS, True), (UsageMode.CREDITS, False)])
    def test_deepgram_backend_sends_key_only_with_own_keys(self, usage_mode, expect_key):
        transport = RecordingTransport(httpx.Response(200, json={"text": "dg", "success": True}))
        settings = Settings(
            provider=TranscriptionProvider.DEEPGRAM,
            api_base_url="https://b",
            usage_mode=usage_mode,
            deepgram_api_key="dg-key",
            use_secure_key_storage=False,
        )

        assert make_router(transport).transcribe(settings, SAMPLES) == "dg"

        request = transport.requests[0]
        assert str(request.url) == "https://b/api/transcribe/deepgram"
        body = json.loads(request.content)
        assert body["model"] == "nova-3"
        assert body["audioBlob"].startswith("data:audio/wav;base64,")
        assert ("apiKey" in body) is expect_key


class TestDeepgramDirect:
    """Direct calls to the Deepgram listen API."""

    def settings(self, **overrides):
        values = dict(
            provider=TranscriptionProvider.DEEPGRAM,
            deepgram_api_key="dg-key",
            use_secure_key_storage=False,
        )
        values.update(overrides)
        return Settings(**values)

    def test_success(self):
        transport = RecordingTransport(httpx.Response(200, json=deepgram_payload("hi there")))

        text = make_router(transport).transcribe(self.settings(selected_language="de"), SAMPLES)

        assert text == "hi there"
        request = transport.requests[0]
        assert request.url.host == "api.deepgram.com"
        assert request.url.params["model"] == "nova-3"
        assert request.url.params["smart_format"] == "true"
        assert request.url.params["language"] == "de"
        assert request.headers["Authorization"] == "Token dg-key"
        assert request.headers["Content-Type"] == "audio/wav"
        assert request.content[:4] == b"RIFF"

    def test_auto_language_is_not_sent(self):
        transport = RecordingTransport(httpx.Response(200, json=deepgram_payload("x")))
        make_router(transport).transcribe(self.settings(), SAMPLES)
        assert "language" not in transport.requests[0].url.params

    def test_403_on_nova3_retries_once_with_nova2(self):
        transport = RecordingTransport(
            httpx.Response(403, json={"err_msg": "no access"}),
            httpx.Response(200, json=deepgram_payload("fallback")),
        )

        assert make_router(transport).transcribe(self.settings(), SAMPLES) == "fallback"
        assert [r.url.params["model"] for r in transport.requests] == ["nova-3", "nova-2"]

    def test_403_twice_surfaces_last_error(self):
        transport = RecordingTransport(
            httpx.Response(403, json={"err_msg": "no access"}),
            httpx.Response(403, json={"error": "still no"}),
        )

        with pytest.raises(ProviderResponseError, match=r"\(403\): still no"):
            make_router(transport).transcribe(self.settings(), SAMPLES)
        assert len(transport.requests) == 2

    def test_non_403_does_not_retry(self):
        transport = RecordingTransport(httpx.Response(400, json={"err_msg": "bad audio"}))

        with pytest.raises(ProviderResponseError, match="bad audio"):
            make_router(transport).transcribe(self.settings(), SAMPLES)
        assert len(transport.requests) == 1

    def test_403_on_other_model_is_terminal(self):
        transport = RecordingTransport(httpx.Response(403, json={}))

        with pytest.raises(ProviderResponseError, match="Unknown Deepgram error"):
            make_router(transport).transcribe(self.settings(deepgram_model="nova-2"), SAMPLES)
        assert len(transport.requests) == 1

    def test_missing_transcript(self):
        transport = RecordingTransport(httpx.Response(200, json={"results": {"channels": []}}))

        with pytest.raises(ProviderResponseError, match="missing transcript"):
            make_router(transport).transcribe(self.settings(), SAMPLES)


class TestHelpers:
    """Test encoding and payload helpers."""

    def test_encode_wav_bytes(self):
        data = encode_wav_bytes(SAMPLES)
        with wave.open(io.BytesIO(data)) as wav:
            assert wav.getnchannels() == 1
            assert wav.getsampwidth() == 2
            assert wav.getframerate() == 16000
            frames = np.frombuffer(wav.readframes(wav.getnframes()), dtype="<i2")
        assert frames.tolist() == [0, 16383, -16383, 32767]

    def test_data_uri_wraps_wav(self):
        uri = encode_wav_data_uri(SAMPLES)
        prefix = "data:audio/wav;base64,"
        assert uri.startswith(prefix)
        assert base64.b64decode(uri[len(prefix):]) == encode_wav_bytes(SAMPLES)

    def test_read_wav_file_resamples_stereo(self, tmp_path):
        path = tmp_path / "clip.wav"
        stereo = np.array([[16384, 0]] * 8000, dtype="<i2")
        with wave.open(str(path), "wb") as wav:
            wav.setnchannels(2)
            wav.setsampwidth(2)
            wav.setframerate(8000)
            wav.writeframes(stereo.tobytes())

        samples = read_wav_file(path)

        assert samples.dtype == np.float32
        assert len(samples) == 16000
        assert np.allclose(samples, 0.25)

    @pytest.mark.parametrize(
        "model,expected",
        [("", "nova-3"), ("nova-2-general", "nova-2-general"), ("general", "general"), ("whisper-1", "nova-3")],
    )
    def test_deepgram_model_from_settings(self, model, expected):
        assert deepgram_model_from_settings(Settings(deepgram_model=model)) == expected

    def test_extract_transcript_handles_garbage(self):
        assert extract_deepgram_transcript(deepgram_payload("ok")) == "ok"
        assert extract_deepgram_transcript({"results": None}) is None
        assert extract_deepgram_transcript([]) is None


class TestValidateDeepgramKey:
    """Test key validation against the projects endpoint."""

    def test_valid_key(self):
        transport = RecordingTransport(httpx.Response(200, json={"projects": []}))
        validate_deepgram_key(" dg-key ", http_client=transport.client())
        assert transport.requests[0].headers["Authorization"] == "Token dg-key"

    def test_rejected_key(self):
        transport = RecordingTransport(httpx.Response(401, json={}))
        with pytest.raises(ProviderConfigurationError, match="rejected"):
            validate_deepgram_key("bad", http_client=transport.client())

    def test_empty_key(self):
        with pytest.raises(ProviderConfigurationError, match="empty"):
            validate_deepgram_key("  ")
