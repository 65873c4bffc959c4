"""LLM post-processing of transcriptions through OpenAI-compatible APIs."""

import logging
import time

from openai import OpenAI

from handy_voice.config import PROMPT_PLACEHOLDER
from handy_voice.settings import PostProcessProvider

logger = logging.getLogger(__name__)


class LLMCleanupError(Exception):
    """Raised when LLM cleanup fails."""


def create_client(provider: PostProcessProvider, api_key: str | None) -> OpenAI:
    """
    Build an OpenAI-compatible client for ``provider``.

    Raises:
        LLMCleanupError: If the client cannot be constructed
    """
    if not provider.base_url.strip():
        raise LLMCleanupError(f"Provider '{provider.id}' has no base URL")
    try:
        return OpenAI(base_url=provider.base_url.strip(), api_key=api_key or "sk-no-key")
    except Exception as e:
        raise LLMCleanupError(f"Failed to create LLM client: {e}") from e


def build_prompt(prompt_template: str, transcription: str) -> str:
    """Substitute the transcription for the ``${output}`` placeholder."""
    return prompt_template.replace(PROMPT_PLACEHOLDER, transcription)


def list_llm_models(client: OpenAI, timeout: float = 10.0) -> list[str]:
    """
    Retrieve available models from an OpenAI-compatible endpoint.

    Returns:
        A sorted list of model identifiers (may be empty)

    Raises:
        LLMCleanupError: If listing fails
    """
    try:
        response = client.models.list(timeout=timeout)
        models = [m.id for m in getattr(response, "data", []) if getattr(m, "id", None)]
        return sorted(set(models))
    except Exception as e:
        raise LLMCleanupError(f"Could not list models: {e}") from e


def clean_with_llm(
    client: OpenAI,
    model: str,
    prompt_template: str,
    transcription: str,
) -> str:
    """
    Rewrite ``transcription`` with a single chat completion.

    The prompt template is sent as the only user message after the
    placeholder has been replaced with the transcription.

    Args:
        client: OpenAI-compatible client
        model: Model name to use
        prompt_template: Prompt containing the ``${output}`` placeholder
        transcription: Raw transcribed text

    Returns:
        The rewritten text

    Raises:
        LLMCleanupError: If the request fails or the response has no content
    """
    processed_prompt = build_prompt(prompt_template, transcription)
    logger.debug(f"Processed prompt length: {len(processed_prompt)} chars")

    start_time = time.perf_counter()
    try:
        response = client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": processed_prompt}],
        )
    except Exception as e:
        raise LLMCleanupError(f"LLM cleanup failed: {e}") from e
    total_time = time.perf_counter() - start_time

    usage = getattr(response, "usage", None)
    if usage is not None:
        logger.info(
            "LLM statistics: total_time=%.3fs input_tokens=%s output_tokens=%s",
            total_time,
            getattr(usage, "prompt_tokens", "?"),
            getattr(usage, "completion_tokens", "?"),
        )
    else:
        logger.info("LLM statistics: total_time=%.3fs (token usage not available)", total_time)

    choices = getattr(response, "choices", None)
    if not choices:
        raise LLMCleanupError("LLM API response has no content")
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if not isinstance(content, str):
        raise LLMCleanupError("LLM API response has no content")
    return content
