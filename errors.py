"""Error types shared by the pipeline, the services and the API layer."""

from typing import Optional, Union

# Substrings the provider puts in rate-limit / quota errors.
RATE_LIMIT_SIGNATURES = ("429", "resource_exhausted", "quota exceeded")

RATE_LIMIT_MESSAGE = (
    "Image generation failed due to API rate limits. This can happen with long scripts. "
    "Please wait a minute and try again."
)


class ComicStudioError(RuntimeError):
    """Base class for application errors."""


class ConfigurationError(ComicStudioError):
    """Raised when required settings (e.g. the API key) are missing."""


class AuthenticationError(ComicStudioError):
    """Raised when an action requires a signed-in user."""


class InvalidTransitionError(ComicStudioError):
    """Raised when a pipeline transition is requested from the wrong stage."""


class PipelineStageError(ComicStudioError):
    """Raised when a remote pipeline stage fails."""

    def __init__(self, *, stage: str, detail: str) -> None:
        super().__init__(detail)
        self.stage = stage
        self.detail = detail


class StageContractError(PipelineStageError):
    """Raised when the provider returns data that does not match the stage contract."""


class EnhancementError(ComicStudioError):
    """Raised when enhancing a single character or scene description fails."""

    def __init__(self, *, target: str, detail: Optional[str] = None) -> None:
        message = detail or f"Failed to enhance description for {target}."
        super().__init__(message)
        self.target = target


class PersistenceError(ComicStudioError):
    """Raised when the project store cannot complete an operation."""


def is_rate_limit_error(error: Union[BaseException, str, None]) -> bool:
    """True when the error text carries a rate-limit / quota signature."""
    if error is None:
        return False
    text = str(error).lower()
    return any(signature in text for signature in RATE_LIMIT_SIGNATURES)
