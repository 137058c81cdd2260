"""Rate-limited prompt generation for image URLs."""

from .errors import (
    InvalidTransitionError,
    NetworkError,
    PromptGenerationError,
    ProviderError,
    QueueClearedError,
    RateLimitedError,
)
from .models import (
    Job,
    JobEvent,
    JobState,
    ProgressSnapshot,
    ProviderName,
    RateLimitPolicy,
)
from .orchestrator import PromptJobOrchestrator
from .providers import GeminiProvider, OpenRouterProvider, PromptProvider, get_provider
from .queue import QueueEntry, RateLimitedQueue
from .retry import run_with_retry

__all__ = [
    "InvalidTransitionError",
    "NetworkError",
    "PromptGenerationError",
    "ProviderError",
    "QueueClearedError",
    "RateLimitedError",
    "Job",
    "JobEvent",
    "JobState",
    "ProgressSnapshot",
    "ProviderName",
    "RateLimitPolicy",
    "PromptJobOrchestrator",
    "GeminiProvider",
    "OpenRouterProvider",
    "PromptProvider",
    "get_provider",
    "QueueEntry",
    "RateLimitedQueue",
    "run_with_retry",
]
