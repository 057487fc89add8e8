"""Chat-completions client for persona-driven model calls."""

import asyncio
import httpx
from typing import List, Dict, Any, Optional
from .config import (
    OPENROUTER_API_KEY,
    LLM_API_URL,
    OPENROUTER_SITE_URL,
    OPENROUTER_APP_TITLE,
    FAST_MODEL,
    DEFAULT_TEMPERATURE,
    GENERATION_TIMEOUT,
)


class GenerationError(Exception):
    """A single model call produced no usable content."""


class GenerationTimeout(GenerationError):
    """A single model call did not settle within the caller's timeout."""


def _build_headers() -> Dict[str, str]:
    headers = {
        "Authorization": f"Bearer {OPENROUTER_API_KEY}",
        "Content-Type": "application/json",
    }
    if OPENROUTER_SITE_URL:
        headers["HTTP-Referer"] = OPENROUTER_SITE_URL
    if OPENROUTER_APP_TITLE:
        headers["X-Title"] = OPENROUTER_APP_TITLE
    return headers


async def query_model(
    model: str,
    messages: List[Dict[str, str]],
    timeout: float = GENERATION_TIMEOUT,
    extra_body: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Send one chat-completions request.

    Args:
        model: Provider model identifier (e.g., "openai/gpt-4o-mini")
        messages: List of message dicts with 'role' and 'content'
        timeout: Transport timeout in seconds
        extra_body: Extra payload keys (temperature, max_tokens, response_format)

    Returns:
        Dict with 'content' (may be None) and 'status_code'

    Raises:
        GenerationError: missing key, transport failure or non-success status
    """
    if not OPENROUTER_API_KEY:
        raise GenerationError("Model API key is missing (set OPENROUTER_API_KEY or OPENAI_API_KEY)")

    payload = {
        "model": model,
        "messages": messages,
    }
    if extra_body:
        payload.update(extra_body)

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(
                LLM_API_URL,
                headers=_build_headers(),
                json=payload,
            )
    except httpx.TimeoutException as e:
        raise GenerationTimeout(f"Transport timeout for {model}: {e}") from e
    except httpx.HTTPError as e:
        raise GenerationError(f"Transport error for {model}: {e}") from e

    if response.status_code in (401, 403):
        raise GenerationError(f"Authorization error ({response.status_code}) for {model}")
    if response.status_code == 429:
        raise GenerationError(f"Rate limited (429) for {model}")
    if response.status_code >= 400:
        raise GenerationError(f"HTTP {response.status_code} from {model}: {response.text[:200]}")

    try:
        data = response.json()
    except ValueError as e:
        raise GenerationError(f"Non-JSON body from {model}") from e

    if not data.get("choices"):
        raise GenerationError(f"Invalid response from {model}: {str(data)[:200]}")

    message = data["choices"][0].get("message") or {}
    return {
        "content": message.get("content"),
        "status_code": response.status_code,
    }


async def generate(
    system_prompt: str,
    messages: List[Dict[str, str]],
    model: str = FAST_MODEL,
    temperature: float = DEFAULT_TEMPERATURE,
    max_tokens: int = 1000,
    expect_json: bool = False,
    timeout: float = GENERATION_TIMEOUT,
    extra_body: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Run one persona-framed generation and return the text.

    The system prompt is sent first, followed by the given messages. Messages
    without a role are sent as user turns. The whole call is bounded by
    `timeout`; an abandoned call raises GenerationTimeout. No retries.
    """
    full_messages = [{"role": "system", "content": system_prompt}]
    for msg in messages:
        full_messages.append({
            "role": msg.get("role") or "user",
            "content": msg.get("content", ""),
        })

    body: Dict[str, Any] = {
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if expect_json:
        body["response_format"] = {"type": "json_object"}
    if extra_body:
        body.update(extra_body)

    try:
        response = await asyncio.wait_for(
            query_model(model, full_messages, timeout=timeout, extra_body=body),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        raise GenerationTimeout(f"{model} did not respond within {timeout}s") from e

    content = response.get("content")
    if not content or not isinstance(content, str) or not content.strip():
        raise GenerationError(f"No content returned by {model}")
    return content
