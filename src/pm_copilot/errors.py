"""Typed failures raised by the artifact pipeline.

Callers (the HTTP layer, scripts, tests) distinguish failures by class:

- InvalidInputError / EmptyQuestionError: rejected before any outbound call.
- GatewayUnavailableError: the generative service call could not complete.
- MalformedArtifactError: the service answered but the reply failed
  schema validation.
- MeetingNotFoundError, DerivationInProgressError, DerivationAbandonedError:
  store and orchestration bookkeeping.
"""

from __future__ import annotations


class CopilotError(Exception):
    """Base class for all pipeline errors."""


class InvalidInputError(CopilotError):
    """Raised when meeting content or a derivation request is unusable."""


class EmptyQuestionError(CopilotError):
    """Raised when a chat question is blank."""

    def __init__(self) -> None:
        super().__init__("Question must not be empty")


class GatewayUnavailableError(CopilotError):
    """Raised when the generative service call fails to complete.

    Attributes:
        model: Model group the call was routed to.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        model: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        self.model = model
        self.original_error = original_error
        super().__init__(message)


class MalformedArtifactError(CopilotError):
    """Raised when a service reply does not match the expected shape.

    Attributes:
        artifact: Name of the expected shape (or "text" for free text).
        raw_preview: First 200 characters of the reply for diagnostics.
    """

    def __init__(self, artifact: str, reason: str, raw: str = "") -> None:
        self.artifact = artifact
        self.reason = reason
        self.raw_preview = raw[:200]
        super().__init__(f"Malformed {artifact} artifact: {reason}")


class MeetingNotFoundError(CopilotError, KeyError):
    """Raised when a meeting id is not in the store."""

    def __init__(self, meeting_id: str) -> None:
        self.meeting_id = meeting_id
        super().__init__(f"Meeting not found: {meeting_id}")

    def __str__(self) -> str:
        return f"Meeting not found: {self.meeting_id}"


class DerivationInProgressError(CopilotError):
    """Raised when the same artifact kind is already being derived for a meeting."""

    def __init__(self, meeting_id: str, kind: str) -> None:
        self.meeting_id = meeting_id
        self.kind = kind
        super().__init__(
            f"A {kind} derivation is already running for meeting {meeting_id}"
        )


class DerivationAbandonedError(CopilotError):
    """Raised when the caller abandoned a call before its result was merged."""
