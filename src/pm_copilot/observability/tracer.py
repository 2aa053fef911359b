"""Langfuse tracing for generative gateway calls.

Integrates with LiteLLM via success/failure callbacks so every gateway
call is traced along with the metadata the orchestrator attaches
(meeting_id, artifact kind).

When Langfuse keys are not configured, initialization is a no-op --
the application runs without tracing rather than crashing.
"""

from __future__ import annotations

import os

import litellm
import structlog

from src.pm_copilot.config import Settings, get_settings

logger = structlog.get_logger(__name__)


def init_langfuse(settings: Settings | None = None) -> bool:
    """Initialize Langfuse tracing on LiteLLM.

    Registers "langfuse" on litellm.success_callback and
    litellm.failure_callback and exports the LANGFUSE_* environment
    variables from the application settings if not already present.

    Returns:
        True if Langfuse was initialized, False if skipped.
    """
    if settings is None:
        settings = get_settings()

    if not settings.LANGFUSE_PUBLIC_KEY or not settings.LANGFUSE_SECRET_KEY:
        logger.info(
            "langfuse.skipped",
            reason="LANGFUSE_PUBLIC_KEY or LANGFUSE_SECRET_KEY not configured",
        )
        return False

    # Explicit env vars take precedence over Settings
    _set_env_if_missing("LANGFUSE_PUBLIC_KEY", settings.LANGFUSE_PUBLIC_KEY)
    _set_env_if_missing("LANGFUSE_SECRET_KEY", settings.LANGFUSE_SECRET_KEY)
    _set_env_if_missing("LANGFUSE_HOST", settings.LANGFUSE_HOST)

    for callbacks_attr in ("success_callback", "failure_callback"):
        callbacks = getattr(litellm, callbacks_attr) or []
        if "langfuse" not in callbacks:
            callbacks.append("langfuse")
        setattr(litellm, callbacks_attr, callbacks)

    logger.info("langfuse.initialized", host=settings.LANGFUSE_HOST)
    return True


def _set_env_if_missing(key: str, value: str) -> None:
    if not os.environ.get(key):
        os.environ[key] = value
