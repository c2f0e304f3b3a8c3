"""
Groq chat-completion client shared by the quiz generator, the grading
explanations and the ask-ai endpoint.
"""
import logging
from typing import Any, Dict, List, Optional

from groq import AsyncGroq, GroqError

from config import get_settings
from errors import ProviderNotConfiguredError, UpstreamProviderError

logger = logging.getLogger(__name__)

_client: Optional[AsyncGroq] = None


def is_ai_configured() -> bool:
    return bool(get_settings().groq_api_key)


def get_groq_client() -> AsyncGroq:
    """Return the process-wide Groq client, creating it on first use."""
    global _client
    settings = get_settings()
    if not settings.groq_api_key:
        raise ProviderNotConfiguredError("AI provider is not configured on server (GROQ_API_KEY missing)")
    if _client is None:
        # one best-effort attempt per call, bounded by the timeout
        _client = AsyncGroq(
            api_key=settings.groq_api_key,
            timeout=settings.ai_timeout_seconds,
            max_retries=0,
        )
    return _client


async def close_ai_client() -> None:
    global _client
    if _client is not None:
        await _client.close()
    _client = None


async def chat_completion(
    prompt: str,
    *,
    system_prompt: Optional[str] = None,
    temperature: float = 0.7,
    model_name: Optional[str] = None,
) -> str:
    client = get_groq_client()
    messages: List[Dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    try:
        resp = await client.chat.completions.create(
            model=model_name or get_settings().groq_model,
            messages=messages,
            temperature=temperature,
        )
    except GroqError as exc:
        logger.warning("Groq request failed: %s", exc)
        raise UpstreamProviderError("AI service error. Please check API key or usage.") from exc
    if not resp.choices:
        return ""
    return (resp.choices[0].message.content or "").strip()
