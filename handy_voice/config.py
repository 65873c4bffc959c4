"""Configuration constants and defaults for handy-voice."""

from pathlib import Path

APP_DIR = Path.home() / ".handy_voice"

# Audio defaults (the recognition engines expect 16 kHz mono)
SAMPLE_RATE = 16000
INPUT_CHANNELS = 1
CHUNK_MS = 50

# Delay between a confirmed on-demand capture start and the start sound,
# so the input device has settled before feedback plays.
ON_DEMAND_SETTLE_SECONDS = 0.1

# Secure storage
SERVICE_NAME = "handy_voice"
DEEPGRAM_KEY_ID = "deepgram"
POST_PROCESS_KEY_PREFIX = "post_process_"

# Remote transcription
TRANSCRIBE_PATH = "/api/transcribe"
DEEPGRAM_BACKEND_PATH = "/api/transcribe/deepgram"
DEEPGRAM_LISTEN_URL = "https://api.deepgram.com/v1/listen"
DEEPGRAM_PROJECTS_URL = "https://api.deepgram.com/v1/projects"
DEFAULT_DEEPGRAM_MODEL = "nova-3"
DEEPGRAM_FALLBACK_MODEL = "nova-2"
DEEPGRAM_MODEL_PREFIXES = ("nova", "general")
# No request timeout: long recordings can take a while to transcribe.
HTTP_TIMEOUT = None

# Local whisper defaults
DEFAULT_LOCAL_MODEL = "small"
DEFAULT_DEVICE = "cpu"
DEFAULT_COMPUTE = "int8"

# LLM post-processing
PROMPT_PLACEHOLDER = "${output}"

DEFAULT_POST_PROCESS_PROVIDERS: list[dict[str, str]] = [
    {"id": "openai", "label": "OpenAI", "base_url": "https://api.openai.com/v1"},
    {"id": "openrouter", "label": "OpenRouter", "base_url": "https://openrouter.ai/api/v1"},
    {"id": "custom", "label": "Custom", "base_url": "http://localhost:11434/v1"},
]

DEFAULT_POST_PROCESS_PROMPT = """Clean this transcript:
1. Fix spelling, capitalization, and punctuation errors
2. Convert number words to digits (twenty-five -> 25, ten percent -> 10%, five dollars -> $5)
3. Replace spoken punctuation with symbols (period -> ., comma -> ,, question mark -> ?)
4. Remove filler words (um, uh, like as filler)
5. Keep the language in the original version (if it was french, keep it in french for example)

Preserve exact meaning and word order. Do not paraphrase or reorder content.

Return only the cleaned transcript.

Transcript:
${output}"""

# Chinese script variants and the OpenCC configuration that produces them
CHINESE_VARIANT_CONFIGS: dict[str, str] = {
    "zh-Hans": "tw2sp",  # Traditional (Taiwan) -> Simplified, with phrases
    "zh-Hant": "s2twp",  # Simplified -> Traditional (Taiwan), with phrases
}

# Hotkeys
DEFAULT_TRANSCRIBE_SHORTCUT = "<ctrl>+<space>"

# Paste defaults
DEFAULT_PASTE_DELAY = 0.15
