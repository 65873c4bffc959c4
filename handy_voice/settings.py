"""Settings snapshot and persistent settings storage for handy-voice."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from handy_voice import config
from handy_voice.credentials import CredentialStorageError, SecretCache

logger = logging.getLogger(__name__)

SETTINGS_FILE = config.APP_DIR / "settings.json"


class TranscriptionProvider(str, Enum):
    LOCAL = "local"
    OPENAI = "openai"
    DEEPGRAM = "deepgram"


class UsageMode(str, Enum):
    OWN_KEYS = "own_keys"
    CREDITS = "credits"


class MicrophoneMode(str, Enum):
    ALWAYS_ON = "always_on"
    ON_DEMAND = "on_demand"


@dataclass(frozen=True)
class PostProcessProvider:
    """An OpenAI-compatible endpoint used to rewrite transcriptions."""

    id: str
    label: str
    base_url: str


@dataclass(frozen=True)
class LLMPrompt:
    id: str
    name: str
    prompt: str


@dataclass(frozen=True)
class ShortcutBinding:
    """A configured hotkey. The id names the action it triggers."""

    id: str
    name: str
    description: str
    current_binding: str


def _default_providers() -> tuple[PostProcessProvider, ...]:
    return tuple(PostProcessProvider(**p) for p in config.DEFAULT_POST_PROCESS_PROVIDERS)


def _default_prompts() -> tuple[LLMPrompt, ...]:
    return (
        LLMPrompt(
            id="default_improve_transcriptions",
            name="Improve Transcriptions",
            prompt=config.DEFAULT_POST_PROCESS_PROMPT,
        ),
    )


def _default_bindings() -> tuple[ShortcutBinding, ...]:
    return (
        ShortcutBinding(
            id="transcribe",
            name="Transcribe",
            description="Converts your speech into text.",
            current_binding=config.DEFAULT_TRANSCRIBE_SHORTCUT,
        ),
    )


@dataclass(frozen=True)
class Settings:
    """Immutable snapshot of the user's settings.

    Operations read one snapshot when they begin and use it throughout, so a
    settings change never takes effect halfway through a recording.
    """

    provider: TranscriptionProvider = TranscriptionProvider.LOCAL
    api_base_url: str | None = None
    auth_token: str | None = None
    usage_mode: UsageMode = UsageMode.OWN_KEYS
    deepgram_api_key: str | None = None
    deepgram_model: str = config.DEFAULT_DEEPGRAM_MODEL
    selected_model: str = ""
    selected_language: str = "auto"

    microphone_mode: MicrophoneMode = MicrophoneMode.ON_DEMAND
    audio_feedback: bool = True
    mute_while_recording: bool = False

    local_model: str = config.DEFAULT_LOCAL_MODEL
    device: str = config.DEFAULT_DEVICE
    compute_type: str = config.DEFAULT_COMPUTE

    post_process_enabled: bool = False
    post_process_provider_id: str | None = "openai"
    post_process_providers: tuple[PostProcessProvider, ...] = field(
        default_factory=_default_providers
    )
    post_process_models: Mapping[str, str] = field(default_factory=dict)
    post_process_api_keys: Mapping[str, str] = field(default_factory=dict)
    post_process_prompts: tuple[LLMPrompt, ...] = field(default_factory=_default_prompts)
    post_process_selected_prompt_id: str | None = None

    use_secure_key_storage: bool = True
    auto_paste: bool = True
    paste_delay: float = config.DEFAULT_PASTE_DELAY
    bindings: tuple[ShortcutBinding, ...] = field(default_factory=_default_bindings)

    def active_post_process_provider(self) -> PostProcessProvider | None:
        for provider in self.post_process_providers:
            if provider.id == self.post_process_provider_id:
                return provider
        return None

    def selected_prompt(self) -> LLMPrompt | None:
        for prompt in self.post_process_prompts:
            if prompt.id == self.post_process_selected_prompt_id:
                return prompt
        return None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Enum):
                data[key] = value.value
            elif isinstance(value, tuple):
                data[key] = list(value)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Settings:
        """Build settings from a (possibly partial) dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {k: v for k, v in data.items() if k in known}

        for key, enum_type in (
            ("provider", TranscriptionProvider),
            ("usage_mode", UsageMode),
            ("microphone_mode", MicrophoneMode),
        ):
            if key in kwargs:
                try:
                    kwargs[key] = enum_type(kwargs[key])
                except ValueError:
                    logger.warning(f"Ignoring invalid {key} value: {kwargs[key]!r}")
                    del kwargs[key]

        # Older settings files used a boolean for the microphone mode
        if "always_on_microphone" in data and "microphone_mode" not in kwargs:
            kwargs["microphone_mode"] = (
                MicrophoneMode.ALWAYS_ON if data["always_on_microphone"] else MicrophoneMode.ON_DEMAND
            )

        for key, item_type in (
            ("post_process_providers", PostProcessProvider),
            ("post_process_prompts", LLMPrompt),
            ("bindings", ShortcutBinding),
        ):
            if key in kwargs:
                kwargs[key] = tuple(item_type(**item) for item in kwargs[key])

        for key in ("post_process_models", "post_process_api_keys"):
            if key in kwargs:
                kwargs[key] = dict(kwargs[key] or {})

        return cls(**kwargs)


def resolve_secret(
    settings: Settings,
    secret_cache: SecretCache | None,
    key_id: str,
    plaintext: str | None,
) -> str | None:
    """Return a usable API key from secure storage or the plaintext setting."""
    if settings.use_secure_key_storage and secret_cache is not None:
        return secret_cache.fetch(key_id)
    if plaintext and plaintext.strip():
        return plaintext.strip()
    return None


def post_process_key_id(provider_id: str) -> str:
    return f"{config.POST_PROCESS_KEY_PREFIX}{provider_id}"


def load_settings(
    path: Path = SETTINGS_FILE, secret_cache: SecretCache | None = None
) -> Settings:
    """Load saved settings from disk, returning defaults on failure.

    With secure key storage enabled, plaintext API keys found in the file are
    migrated to the credential store and dropped from the returned snapshot.
    """
    try:
        if path.is_file():
            data = json.loads(path.read_text(encoding="utf-8"))
            settings = Settings.from_dict(data)
            if settings.use_secure_key_storage and secret_cache is not None:
                settings = _migrate_secure_settings(settings, secret_cache)
            return settings
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, TypeError) as e:
        # TypeError: nested entries with missing or unexpected fields
        logger.error(f"Could not read saved settings: {e}")
    return Settings()


def save_settings(
    settings: Settings, path: Path = SETTINGS_FILE, secret_cache: SecretCache | None = None
) -> bool:
    """Persist settings to disk. Returns True on success, False otherwise.

    Secure settings (API keys) go to the credential store and are left out of
    the JSON file.
    """
    data = settings.to_dict()
    if settings.use_secure_key_storage:
        if secret_cache is not None:
            _store_secure_settings(settings, secret_cache)
        data["deepgram_api_key"] = None
        data["post_process_api_keys"] = {}

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return True
    except (OSError, UnicodeEncodeError, TypeError, ValueError) as e:
        logger.error(f"Could not save settings: {e}")
        return False


def _migrate_secure_settings(settings: Settings, secret_cache: SecretCache) -> Settings:
    changes: dict[str, Any] = {}
    if settings.deepgram_api_key and secret_cache.migrate_from_plaintext(
        config.DEEPGRAM_KEY_ID, settings.deepgram_api_key
    ):
        changes["deepgram_api_key"] = None
        logger.info("Migrated deepgram_api_key to secure storage")

    remaining = dict(settings.post_process_api_keys)
    for provider_id, value in settings.post_process_api_keys.items():
        if secret_cache.migrate_from_plaintext(post_process_key_id(provider_id), value):
            del remaining[provider_id]
    if len(remaining) != len(settings.post_process_api_keys):
        changes["post_process_api_keys"] = remaining

    return replace(settings, **changes) if changes else settings


def _store_secure_settings(settings: Settings, secret_cache: SecretCache) -> None:
    pending = [(config.DEEPGRAM_KEY_ID, settings.deepgram_api_key)]
    pending.extend(
        (post_process_key_id(pid), value) for pid, value in settings.post_process_api_keys.items()
    )
    for key_id, value in pending:
        if value and value.strip():
            try:
                secret_cache.store(key_id, value.strip())
            except (CredentialStorageError, ValueError) as e:
                logger.warning(f"Failed to store {key_id} in credential manager: {e}")


class SettingsStore:
    """Holds the current settings snapshot and persists every change."""

    def __init__(self, path: Path = SETTINGS_FILE, secret_cache: SecretCache | None = None):
        self.path = path
        self.secret_cache = secret_cache
        self._lock = threading.Lock()
        self._settings = load_settings(path, secret_cache)

    def snapshot(self) -> Settings:
        with self._lock:
            return self._settings

    def update(self, **changes: Any) -> Settings:
        with self._lock:
            self._settings = replace(self._settings, **changes)
            settings = self._settings
        if not save_settings(settings, self.path, self.secret_cache):
            logger.warning("Could not save settings to disk")
        return settings

    def store_deepgram_key(self, api_key: str) -> None:
        """Save the Deepgram key where the current storage mode says it goes."""
        settings = self.snapshot()
        if settings.use_secure_key_storage and self.secret_cache is not None:
            self.secret_cache.store(config.DEEPGRAM_KEY_ID, api_key)
        else:
            self.update(deepgram_api_key=api_key.strip())

    def delete_deepgram_key(self) -> None:
        if self.secret_cache is not None:
            self.secret_cache.delete(config.DEEPGRAM_KEY_ID)
        if self.snapshot().deepgram_api_key:
            self.update(deepgram_api_key=None)

    def set_secure_key_storage(self, enabled: bool) -> Settings:
        """Switch key storage mode, moving the Deepgram key along with it."""
        settings = self.snapshot()
        if settings.use_secure_key_storage == enabled or self.secret_cache is None:
            return self.update(use_secure_key_storage=enabled)

        if enabled:
            if settings.deepgram_api_key:
                self.secret_cache.store(config.DEEPGRAM_KEY_ID, settings.deepgram_api_key)
            return self.update(use_secure_key_storage=True, deepgram_api_key=None)

        key = self.secret_cache.fetch(config.DEEPGRAM_KEY_ID)
        updated = self.update(use_secure_key_storage=False, deepgram_api_key=key)
        if key:
            self.secret_cache.delete(config.DEEPGRAM_KEY_ID)
        return updated

    def store_post_process_key(self, provider_id: str, api_key: str) -> None:
        settings = self.snapshot()
        if settings.use_secure_key_storage and self.secret_cache is not None:
            self.secret_cache.store(post_process_key_id(provider_id), api_key)
        else:
            keys = dict(settings.post_process_api_keys)
            keys[provider_id] = api_key.strip()
            self.update(post_process_api_keys=keys)

    def delete_post_process_key(self, provider_id: str) -> None:
        if self.secret_cache is not None:
            self.secret_cache.delete(post_process_key_id(provider_id))
        keys = dict(self.snapshot().post_process_api_keys)
        if keys.pop(provider_id, None) is not None:
            self.update(post_process_api_keys=keys)
