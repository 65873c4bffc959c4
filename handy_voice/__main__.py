"""Command-line entry point for Handy Voice."""

from __future__ import annotations

import argparse
import logging
import sys
import wave
from pathlib import Path
from typing import Sequence

from handy_voice import config
from handy_voice.credentials import CredentialStorageError, SecretCache, mask_api_key
from handy_voice.logging_config import setup_logging
from handy_voice.settings import SETTINGS_FILE, SettingsStore, post_process_key_id, resolve_secret


def _known_provider(store: SettingsStore, provider: str) -> bool:
    if provider == config.DEEPGRAM_KEY_ID:
        return True
    return any(p.id == provider for p in store.snapshot().post_process_providers)


def _current_key(store: SettingsStore, provider: str) -> str | None:
    settings = store.snapshot()
    if provider == config.DEEPGRAM_KEY_ID:
        return resolve_secret(settings, store.secret_cache, provider, settings.deepgram_api_key)
    return resolve_secret(
        settings,
        store.secret_cache,
        post_process_key_id(provider),
        settings.post_process_api_keys.get(provider),
    )


def cmd_run(store: SettingsStore, args: argparse.Namespace) -> int:
    from handy_voice.app import build_app, run

    run(build_app(store))
    return 0


def cmd_set_key(store: SettingsStore, args: argparse.Namespace) -> int:
    key = args.key.strip()
    if args.validate and args.provider == config.DEEPGRAM_KEY_ID:
        from handy_voice.providers import ProviderConfigurationError, validate_deepgram_key
        from handy_voice.transcription import TranscriptionError

        try:
            validate_deepgram_key(key)
        except ProviderConfigurationError as e:
            print(f"Key rejected: {e}", file=sys.stderr)
            return 1
        except TranscriptionError as e:
            print(f"Could not validate key: {e}", file=sys.stderr)
            return 1

    try:
        if args.provider == config.DEEPGRAM_KEY_ID:
            store.store_deepgram_key(key)
        else:
            store.store_post_process_key(args.provider, key)
    except (CredentialStorageError, ValueError) as e:
        print(f"Could not store key: {e}", file=sys.stderr)
        return 1
    print(f"Saved {args.provider} key: {mask_api_key(key)}")
    return 0


def cmd_delete_key(store: SettingsStore, args: argparse.Namespace) -> int:
    try:
        if args.provider == config.DEEPGRAM_KEY_ID:
            store.delete_deepgram_key()
        else:
            store.delete_post_process_key(args.provider)
    except (CredentialStorageError, ValueError) as e:
        print(f"Could not delete key: {e}", file=sys.stderr)
        return 1
    print(f"Deleted {args.provider} key")
    return 0


def cmd_show_key(store: SettingsStore, args: argparse.Namespace) -> int:
    print(f"{args.provider}: {mask_api_key(_current_key(store, args.provider))}")
    return 0


def cmd_transcribe(store: SettingsStore, args: argparse.Namespace) -> int:
    from handy_voice.finalizer import TextFinalizer
    from handy_voice.providers import ProviderRouter, read_wav_file
    from handy_voice.transcription import LocalTranscriber, TranscriptionError

    settings = store.snapshot()
    try:
        samples = read_wav_file(args.wav)
    except (OSError, EOFError, ValueError, wave.Error) as e:
        print(f"Could not read {args.wav}: {e}", file=sys.stderr)
        return 1

    recognizer = LocalTranscriber(settings.local_model, settings.device, settings.compute_type)
    router = ProviderRouter(recognizer, secret_cache=store.secret_cache)
    try:
        raw = router.transcribe(settings, samples)
    except TranscriptionError as e:
        print(f"Transcription failed: {e}", file=sys.stderr)
        return 1

    result = TextFinalizer(secret_cache=store.secret_cache).finalize(settings, raw)
    print(result.final_text)
    return 0


def cmd_models(store: SettingsStore, args: argparse.Namespace) -> int:
    from handy_voice.llm_cleanup import LLMCleanupError, create_client, list_llm_models

    settings = store.snapshot()
    provider_id = args.provider or settings.post_process_provider_id
    provider = next((p for p in settings.post_process_providers if p.id == provider_id), None)
    if provider is None:
        print(f"Unknown post-processing provider: {provider_id}", file=sys.stderr)
        return 1
    try:
        client = create_client(provider, _current_key(store, provider.id))
        models = list_llm_models(client)
    except LLMCleanupError as e:
        print(str(e), file=sys.stderr)
        return 1
    for model in models:
        print(model)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m handy_voice",
        description="Push-to-talk dictation with local or remote transcription",
    )
    parser.add_argument("--debug", action="store_true", help="Log debug output to the console")
    parser.add_argument("--settings", default=None, help=f"Settings file (default: {SETTINGS_FILE})")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Listen for hotkeys and dictate").set_defaults(func=cmd_run)

    p = sub.add_parser("set-key", help="Store an API key")
    p.add_argument("provider", help="'deepgram' or a post-processing provider id")
    p.add_argument("key")
    p.add_argument("--validate", action="store_true", help="Check a Deepgram key before saving it")
    p.set_defaults(func=cmd_set_key)

    p = sub.add_parser("delete-key", help="Remove a stored API key")
    p.add_argument("provider")
    p.set_defaults(func=cmd_delete_key)

    p = sub.add_parser("show-key", help="Show a masked preview of a stored API key")
    p.add_argument("provider")
    p.set_defaults(func=cmd_show_key)

    p = sub.add_parser("transcribe", help="Transcribe a WAV file with the configured provider")
    p.add_argument("wav")
    p.set_defaults(func=cmd_transcribe)

    p = sub.add_parser("models", help="List models offered by a post-processing provider")
    p.add_argument("--provider", default=None)
    p.set_defaults(func=cmd_models)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    setup_logging(logging.DEBUG if args.debug else logging.INFO)

    path = SETTINGS_FILE if args.settings is None else Path(args.settings)
    store = SettingsStore(path, SecretCache())

    provider = getattr(args, "provider", None)
    if args.command in ("set-key", "delete-key", "show-key") and not _known_provider(store, provider):
        parser.error(f"unknown provider: {provider}")

    return args.func(store, args)


if __name__ == "__main__":
    sys.exit(main())
