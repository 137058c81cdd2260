"""Error taxonomy for prompt generation."""

from typing import Optional

RATE_LIMIT_PATTERNS = (
    "429",
    "rate limit",
    "resource exhausted",
    "too many requests",
)


class PromptGenerationError(Exception):
    """Base class for failures while generating a prompt."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RateLimitedError(PromptGenerationError):
    """The provider asked us to slow down. Retryable."""


class ProviderError(PromptGenerationError):
    """Non-success response from the provider."""


class NetworkError(PromptGenerationError):
    """Transport failure fetching the image or reaching the provider."""


class QueueClearedError(PromptGenerationError):
    """Entry was discarded before it was dispatched."""

    def __init__(self, message: str = "Queue cleared"):
        super().__init__(message)


class InvalidTransitionError(Exception):
    """A job was asked to make a state change it does not allow."""


def is_rate_limit_message(message: str) -> bool:
    """Check a provider message for a throttling/quota signal."""
    normalized = message.lower().replace("_", " ")
    return any(pattern in normalized for pattern in RATE_LIMIT_PATTERNS)


def is_rate_limit_error(error: BaseException) -> bool:
    """Return True when the error should be retried with backoff.

    Args:
        error: Exception raised by a provider call

    Returns:
        True for RateLimitedError, a 429 status, or a rate-limit message
    """
    if isinstance(error, RateLimitedError):
        return True
    if isinstance(error, (QueueClearedError, NetworkError)):
        return False
    if getattr(error, "status_code", None) == 429:
        return True
    return is_rate_limit_message(str(error))
