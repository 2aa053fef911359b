"""Generative service gateway via LiteLLM Router.

Provides a stateless gateway to the generative text/reasoning service with:
- Gemini 2.5 Flash ("fast") for extraction, email and chat turns
- Gemini 3 Pro preview ("reasoning") for PRD and roadmap derivation
- OpenAI fallbacks in both groups when an OpenAI key is configured
- Inline binary content (audio) as base64 data URIs
- Strict structured output: replies are validated against a Pydantic
  response model and fail closed with MalformedArtifactError
"""

from __future__ import annotations

import base64
import re
import time
from typing import Any

import structlog
from litellm import Router
from pydantic import BaseModel, ValidationError

from src.pm_copilot.artifacts.schemas import response_format_for
from src.pm_copilot.config import Settings, get_settings
from src.pm_copilot.errors import GatewayUnavailableError, MalformedArtifactError
from src.pm_copilot.meetings.schemas import ChatMessage

logger = structlog.get_logger(__name__)

MODEL_FAST = "fast"
MODEL_REASONING = "reasoning"


# ── Prompt Parts ─────────────────────────────────────────────────────────────


class PromptPart(BaseModel):
    """One ordered content segment of a prompt: text or inline binary."""

    text: str | None = None
    data: bytes | None = None
    media_type: str | None = None

    @classmethod
    def from_text(cls, text: str) -> PromptPart:
        return cls(text=text)

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str) -> PromptPart:
        return cls(data=data, media_type=media_type)

    @property
    def is_binary(self) -> bool:
        return self.data is not None

    def to_content_block(self) -> dict[str, Any]:
        """Render as a LiteLLM/OpenAI-style content block."""
        if self.is_binary:
            encoded = base64.b64encode(self.data).decode("ascii")
            return {
                "type": "file",
                "file": {"file_data": f"data:{self.media_type};base64,{encoded}"},
            }
        return {"type": "text", "text": self.text or ""}


def build_messages(
    parts: list[PromptPart],
    system_prompt: str | None = None,
    history: list[ChatMessage] | None = None,
) -> list[dict]:
    """Assemble chat messages: system, prior turns, then the prompt parts.

    Text-only prompts are sent as a single string; a prompt carrying a
    binary part is sent as an ordered list of content blocks.

    Raises:
        ValueError: If parts is empty or holds more than one binary part.
    """
    if not parts:
        raise ValueError("Prompt must contain at least one part")
    if sum(1 for p in parts if p.is_binary) > 1:
        raise ValueError("Prompt may contain at most one binary part")

    messages: list[dict] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for turn in history or []:
        role = "assistant" if turn.role == "model" else "user"
        messages.append({"role": role, "content": turn.content})

    if any(p.is_binary for p in parts):
        content: Any = [p.to_content_block() for p in parts]
    else:
        content = "\n\n".join(p.text or "" for p in parts)
    messages.append({"role": "user", "content": content})
    return messages


def extract_json_from_response(text: str) -> str:
    """Extract JSON content from a reply, stripping code fences.

    Raises:
        ValueError: If no JSON object or array is found in the text.
    """
    cleaned = re.sub(r"^```(?:json)?\s*\n?", "", text.strip())
    cleaned = re.sub(r"\n?```\s*$", "", cleaned.strip())

    match = re.search(r"[\[{]", cleaned)
    if match:
        return cleaned[match.start():]

    raise ValueError(f"No JSON found in reply: {text[:200]!r}")


# ── Gateway ──────────────────────────────────────────────────────────────────


def build_router(settings: Settings) -> Router | None:
    """Build the LiteLLM Router from configured provider keys.

    Returns None when no provider key is configured.
    """
    model_list = []

    if settings.GEMINI_API_KEY:
        model_list.append({
            "model_name": MODEL_FAST,
            "litellm_params": {
                "model": settings.LLM_FAST_MODEL,
                "api_key": settings.GEMINI_API_KEY,
            },
        })
        model_list.append({
            "model_name": MODEL_REASONING,
            "litellm_params": {
                "model": settings.LLM_REASONING_MODEL,
                "api_key": settings.GEMINI_API_KEY,
            },
        })

    # Fallback deployments in the same groups
    if settings.OPENAI_API_KEY:
        model_list.append({
            "model_name": MODEL_FAST,
            "litellm_params": {
                "model": "openai/gpt-4o-mini",
                "api_key": settings.OPENAI_API_KEY,
            },
        })
        model_list.append({
            "model_name": MODEL_REASONING,
            "litellm_params": {
                "model": "openai/gpt-4o",
                "api_key": settings.OPENAI_API_KEY,
            },
        })

    if not model_list:
        logger.warning("No LLM API keys configured -- generative gateway will be unavailable")
        return None

    return Router(
        model_list=model_list,
        num_retries=settings.LLM_MAX_RETRIES,
        timeout=settings.LLM_TIMEOUT,
        allowed_fails=3,
        cooldown_time=30,
    )


class GenerativeGateway:
    """Single entry point for calls to the generative service.

    Holds no conversation state: multi-turn history is passed in on every
    call and dropped when the call returns.

    Args:
        settings: Application settings. Uses get_settings() if None.
        router: Pre-built LiteLLM Router (or compatible object exposing
            ``acompletion``). Built from settings if None.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        router: Any | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.router = router if router is not None else build_router(self._settings)

    @property
    def available(self) -> bool:
        return self.router is not None

    async def complete(
        self,
        parts: list[PromptPart],
        expected_shape: type[BaseModel] | None = None,
        *,
        model: str = MODEL_FAST,
        system_prompt: str | None = None,
        history: list[ChatMessage] | None = None,
        temperature: float | None = None,
        max_tokens: int = 8192,
        metadata: dict | None = None,
    ) -> BaseModel | str:
        """Execute one completion and return the parsed result.

        Args:
            parts: Ordered prompt segments (text, at most one binary).
            expected_shape: Response model to constrain and validate the
                reply against. None means the reply is free text.
            model: Model group name ("fast" or "reasoning").
            system_prompt: Optional system instruction.
            history: Prior conversation turns, oldest first.
            temperature: Sampling temperature; provider default if None.
            max_tokens: Maximum tokens in the response.
            metadata: Extra metadata attached to the call for tracing.

        Returns:
            An instance of expected_shape, or the reply text.

        Raises:
            GatewayUnavailableError: If the call could not complete.
            MalformedArtifactError: If the reply is empty or does not
                validate against expected_shape.
        """
        if self.router is None:
            raise GatewayUnavailableError("No LLM API keys configured", model=model)

        messages = build_messages(parts, system_prompt=system_prompt, history=history)
        shape_name = expected_shape.__name__ if expected_shape else "text"

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "metadata": {"artifact": shape_name, **(metadata or {})},
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if expected_shape is not None:
            kwargs["response_format"] = response_format_for(expected_shape)

        start = time.monotonic()
        try:
            response = await self.router.acompletion(**kwargs)
            content = response.choices[0].message.content or ""
        except Exception as exc:
            logger.warning(
                "llm.completion_failed",
                model=model,
                artifact=shape_name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise GatewayUnavailableError(
                f"Generative service call failed: {exc}",
                model=model,
                original_error=exc,
            ) from exc

        usage = getattr(response, "usage", None)
        logger.info(
            "llm.completion",
            model=getattr(response, "model", model),
            artifact=shape_name,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
            prompt_tokens=getattr(usage, "prompt_tokens", None),
            completion_tokens=getattr(usage, "completion_tokens", None),
        )

        if expected_shape is None:
            text = content.strip()
            if not text:
                raise MalformedArtifactError("text", "empty reply", content)
            return text

        return self._parse(content, expected_shape)

    @staticmethod
    def _parse(content: str, shape: type[BaseModel]) -> BaseModel:
        """Validate a reply against a response model, failing closed."""
        try:
            return shape.model_validate_json(extract_json_from_response(content))
        except (ValueError, ValidationError) as exc:
            logger.warning(
                "llm.malformed_artifact",
                artifact=shape.__name__,
                error=str(exc)[:500],
                reply_preview=content[:200],
            )
            raise MalformedArtifactError(shape.__name__, str(exc), content) from exc
