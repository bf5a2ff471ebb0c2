"""Error taxonomy shared by providers, the shot pipeline and the render worker."""

from __future__ import annotations

from typing import Any


class CutroomError(Exception):
    """Base exception for all CutRoom errors."""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


# ============================================================================
# Configuration / validation
# ============================================================================


class ConfigurationError(CutroomError):
    """A required credential or setting is missing."""


class InvalidRequestError(CutroomError):
    """The request cannot be served as given. Never retried."""


class UnknownModelError(InvalidRequestError):
    """Model identifier is not in the catalog and is not a valid dynamic id."""

    def __init__(self, model_id: str, category: str):
        super().__init__(f"{category.capitalize()} model not found: {model_id}")
        self.model_id = model_id
        self.category = category


class MissingReferenceImageError(InvalidRequestError):
    """Model requires a reference image but none was supplied."""

    def __init__(self, model_id: str):
        super().__init__(f"Model {model_id} requires a reference image")
        self.model_id = model_id


class InvalidTransitionError(InvalidRequestError):
    """Shot status change is not allowed from its current state."""

    def __init__(self, shot_id: str, current: str, target: str, reason: str = ""):
        message = f"Shot {shot_id}: cannot move from {current} to {target}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.shot_id = shot_id
        self.current = current
        self.target = target


class GenerationInProgressError(InvalidRequestError):
    """A generation operation is already running for the shot."""

    def __init__(self, shot_id: str, operation: str):
        super().__init__(f"Shot {shot_id} already has an active {operation} operation")
        self.shot_id = shot_id
        self.operation = operation


class PlanValidationError(InvalidRequestError):
    """Montage plan violates its structural invariants."""


# ============================================================================
# Provider errors
# ============================================================================


class ProviderError(CutroomError):
    """Error returned by a generation provider.

    The provider's message is kept verbatim so operators can diagnose
    provider-side issues.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status: int | None = None,
        body: Any = None,
    ):
        super().__init__(message, recoverable=_is_transient_status(status))
        self.provider = provider
        self.status = status
        self.body = body

    @property
    def is_client_error(self) -> bool:
        """4xx other than 429."""
        return self.status is not None and 400 <= self.status < 500 and self.status != 429

    @property
    def is_transient(self) -> bool:
        return _is_transient_status(self.status)


def _is_transient_status(status: int | None) -> bool:
    if status is None:
        return True
    return status == 429 or status >= 500


class NoMediaInResponseError(CutroomError):
    """Provider reported success but returned no usable artifact."""

    def __init__(self, provider: str, media: str = "media"):
        super().__init__(f"No {media} in {provider} response")
        self.provider = provider


class GenerationCancelledError(CutroomError):
    """Operation was cancelled by the operator. Not a failure."""

    def __init__(self, message: str = "Generation cancelled"):
        super().__init__(message, recoverable=True)


# ============================================================================
# Render jobs
# ============================================================================


class RenderJobNotFoundError(CutroomError):
    """No render job with the given id."""

    def __init__(self, job_id: str):
        super().__init__(f"Render job not found: {job_id}")
        self.job_id = job_id


class RenderNotCompleteError(CutroomError):
    """Render output requested before the job finished successfully."""

    def __init__(self, job_id: str, status: str):
        super().__init__(f"Render job {job_id} is not complete (status: {status})")
        self.job_id = job_id
        self.status = status


class RenderBackendError(CutroomError):
    """Render backend failed to produce output."""
