"""Handy Voice - push-to-talk dictation with local or remote transcription."""

__version__ = "0.1.0"

__all__ = [
    "actions",
    "audio",
    "config",
    "credentials",
    "finalizer",
    "history",
    "hotkeys",
    "llm_cleanup",
    "providers",
    "sequencer",
    "settings",
    "transcription",
]
