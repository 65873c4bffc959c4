"""Final text selection: Chinese script conversion or LLM rewrite."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from opencc import OpenCC

from handy_voice.config import CHINESE_VARIANT_CONFIGS
from handy_voice.credentials import SecretCache
from handy_voice.llm_cleanup import LLMCleanupError, clean_with_llm, create_client
from handy_voice.settings import Settings, post_process_key_id, resolve_secret

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FinalizedText:
    final_text: str
    post_processed_text: str | None = None
    post_process_prompt: str | None = None


class TextFinalizer:
    """Applies at most one rewrite to a raw transcription.

    Script conversion for the Chinese variants is a normalization step and
    always wins over a configured LLM prompt. Every rewrite failure falls
    back to the raw text.
    """

    def __init__(
        self,
        secret_cache: SecretCache | None = None,
        converter_factory: Callable[[str], Any] = OpenCC,
        client_factory: Callable[..., Any] = create_client,
    ):
        self._secret_cache = secret_cache
        self._converter_factory = converter_factory
        self._client_factory = client_factory

    def finalize(self, settings: Settings, raw_text: str) -> FinalizedText:
        conversion = CHINESE_VARIANT_CONFIGS.get(settings.selected_language)
        if conversion is not None:
            converted = self.convert_chinese_variant(conversion, raw_text)
            if converted is None:
                return FinalizedText(raw_text)
            return FinalizedText(converted, post_processed_text=converted)

        logger.debug(
            "selected_language is not Simplified or Traditional Chinese; skipping conversion"
        )
        processed = self.post_process(settings, raw_text)
        if processed is None:
            return FinalizedText(raw_text)
        text, prompt = processed
        return FinalizedText(text, post_processed_text=text, post_process_prompt=prompt)

    def convert_chinese_variant(self, conversion: str, text: str) -> str | None:
        logger.debug(f"Starting Chinese conversion with OpenCC config '{conversion}'")
        try:
            converter = self._converter_factory(conversion)
        except Exception as e:
            logger.error(
                f"Failed to initialize OpenCC converter: {e}. "
                "Falling back to original transcription."
            )
            return None
        try:
            converted = converter.convert(text)
        except Exception as e:
            logger.error(
                f"OpenCC conversion failed: {e}. Falling back to original transcription."
            )
            return None
        logger.debug(
            f"OpenCC conversion completed. Input length: {len(text)}, "
            f"Output length: {len(converted)}"
        )
        return converted

    def post_process(self, settings: Settings, text: str) -> tuple[str, str] | None:
        """Rewrite ``text`` with the selected LLM prompt.

        Returns:
            (rewritten text, prompt template) or None when skipped or failed
        """
        if not settings.post_process_enabled:
            return None

        provider = settings.active_post_process_provider()
        if provider is None:
            logger.debug("Post-processing enabled but no provider is selected")
            return None

        model = settings.post_process_models.get(provider.id, "")
        if not model.strip():
            logger.debug(
                f"Post-processing skipped because provider '{provider.id}' has no model configured"
            )
            return None

        if settings.post_process_selected_prompt_id is None:
            logger.debug("Post-processing skipped because no prompt is selected")
            return None
        prompt = settings.selected_prompt()
        if prompt is None:
            logger.debug(
                f"Post-processing skipped because prompt "
                f"'{settings.post_process_selected_prompt_id}' was not found"
            )
            return None
        if not prompt.prompt.strip():
            logger.debug("Post-processing skipped because the selected prompt is empty")
            return None

        api_key = resolve_secret(
            settings,
            self._secret_cache,
            post_process_key_id(provider.id),
            settings.post_process_api_keys.get(provider.id),
        )

        logger.debug(f"Starting LLM post-processing with provider '{provider.id}' (model: {model})")
        try:
            client = self._client_factory(provider, api_key)
            result = clean_with_llm(client, model, prompt.prompt, text)
        except LLMCleanupError as e:
            logger.error(
                f"LLM post-processing failed for provider '{provider.id}': {e}. "
                "Falling back to original transcription."
            )
            return None

        logger.debug(
            f"LLM post-processing succeeded for provider '{provider.id}'. "
            f"Output length: {len(result)} chars"
        )
        return result, prompt.prompt
