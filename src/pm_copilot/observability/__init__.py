"""LLM call tracing."""
