"""Structured error taxonomy for the generation pipeline.

Every failure the orchestrator can report is a ``GenerationError`` carrying a
stable machine-readable ``code`` and the HTTP status it maps to.  The FastAPI
exception handler in ``photoglow.main`` renders them as
``{"ok": false, "error": code, "details": ...}``.
"""

from __future__ import annotations

from typing import Any


class GenerationError(Exception):
    """Base class for all pipeline errors."""

    status_code: int = 500
    default_code: str = "internal_error"

    def __init__(
        self,
        code: str | None = None,
        details: Any = None,
        status_code: int | None = None,
    ) -> None:
        self.code = code or self.default_code
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.code if details is None else f"{self.code}: {details}")

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": False, "error": self.code}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationFailed(GenerationError):
    """Client error detected before any side effect."""
    status_code = 400
    default_code = "invalid_request"


class AuthError(GenerationError):
    status_code = 401
    default_code = "invalid_token"


class ForbiddenError(GenerationError):
    status_code = 403
    default_code = "forbidden"


class InsufficientCredits(GenerationError):
    status_code = 402
    default_code = "insufficient_credits"


class RateLimited(GenerationError):
    status_code = 429
    default_code = "rate_limited"


class ReferenceRequired(ValidationFailed):
    """Routing needs at least one resolved reference image."""
    default_code = "missing_reference_images"


class ProviderTransportError(GenerationError):
    """Network or auth failure while calling a provider."""
    status_code = 502
    default_code = "provider_error"


class ProviderRejected(GenerationError):
    """Provider job ended failed/canceled, timed out, or produced no output."""
    status_code = 502
    default_code = "prediction_failed"


class StorageError(GenerationError):
    """Object storage write, download or URL issuance failed."""
    status_code = 500
    default_code = "storage_error"


class ConfigurationError(GenerationError):
    status_code = 500
    default_code = "missing_env"


class JobNotFound(GenerationError):
    status_code = 404
    default_code = "job_not_found"
