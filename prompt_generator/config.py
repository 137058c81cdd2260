"""Runtime defaults and credential lookup."""

import os
from typing import Optional

from dotenv import load_dotenv

from .models import ProviderName, RateLimitPolicy

load_dotenv()

DEFAULT_MODELS = {
    ProviderName.GEMINI: "gemini-1.5-flash",
    ProviderName.OPENROUTER: "google/gemini-flash-1.5",
}

API_KEY_ENV_VARS = {
    ProviderName.GEMINI: "GEMINI_API_KEY",
    ProviderName.OPENROUTER: "OPENROUTER_API_KEY",
}

# Seconds
IMAGE_FETCH_TIMEOUT = 30
PROVIDER_TIMEOUT = 120

DEFAULT_POLICY = RateLimitPolicy()
FREE_TIER_POLICY = RateLimitPolicy.free_tier()


def policy_for(free_tier: bool = False) -> RateLimitPolicy:
    """Pick the rate-limit profile for a run."""
    return FREE_TIER_POLICY if free_tier else DEFAULT_POLICY


def load_api_key(provider: ProviderName) -> Optional[str]:
    """Read the bearer credential for a provider from the environment.

    Returns:
        Key string, or None when unset or blank
    """
    value = os.getenv(API_KEY_ENV_VARS[ProviderName(provider)], "").strip()
    return value or None
