"""Data models for the prompt generator."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ProviderName(str, Enum):
    """Remote services able to describe an image."""
    GEMINI = "gemini"
    OPENROUTER = "openrouter"


class JobState(str, Enum):
    """Lifecycle state of a single image job."""
    PENDING = "pending"
    GENERATING = "generating"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class JobEvent(str, Enum):
    """Events the orchestrator applies to a job."""
    DISPATCHED = "dispatched"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Job(BaseModel):
    """One image reference and its generated prompt."""
    reference: str
    state: JobState = JobState.PENDING
    result: Optional[str] = None
    failure_reason: Optional[str] = None


class RateLimitPolicy(BaseModel):
    """Spacing and retry settings for one run. All durations in milliseconds."""
    model_config = ConfigDict(frozen=True)

    min_spacing_ms: int = Field(default=2000, gt=0)
    max_retries: int = Field(default=3, ge=0)
    initial_backoff_ms: int = Field(default=2000, ge=0)
    max_backoff_ms: int = Field(default=30000, ge=0)
    backoff_multiplier: float = Field(default=2, ge=1)

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> "RateLimitPolicy":
        if self.max_backoff_ms < self.initial_backoff_ms:
            raise ValueError("max_backoff_ms must be >= initial_backoff_ms")
        return self

    @classmethod
    def free_tier(cls) -> "RateLimitPolicy":
        """Conservative spacing for free models (about 10 requests per minute)."""
        return cls(min_spacing_ms=6000)


class ProgressSnapshot(BaseModel):
    """Aggregate batch progress."""
    completed: int = 0
    total: int = 0
    percentage: int = 0

    @classmethod
    def compute(cls, completed: int, total: int) -> "ProgressSnapshot":
        # half rounds up
        percentage = int(completed * 100 / total + 0.5) if total else 0
        return cls(completed=completed, total=total, percentage=percentage)


class ImageData(BaseModel):
    """Base64-encoded image bytes with their media type."""
    data: str
    mime_type: str


class ModelPricing(BaseModel):
    prompt: str
    completion: str


class OpenRouterModel(BaseModel):
    """A model entry from the OpenRouter catalogue."""
    id: str
    name: str
    description: Optional[str] = None
    context_length: Optional[int] = None
    pricing: ModelPricing

    @property
    def is_free(self) -> bool:
        return self.pricing.prompt == "0" and self.pricing.completion == "0"


class BatchCreate(BaseModel):
    """Request to generate prompts for a batch of image URLs."""
    urls: list[str]
    provider: ProviderName = ProviderName.GEMINI
    model: Optional[str] = None
    api_key: Optional[str] = None
    free_tier: bool = False
    policy: Optional[RateLimitPolicy] = None
