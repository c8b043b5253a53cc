"""
Configuration objects for NichePress
"""

import os
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_LLM_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_LLM_MODEL = "claude-sonnet-4-20250514"


class LLMConfig(BaseModel):
    """Settings for the chat-completion endpoint used by LLMGateway"""

    api_key: Optional[str] = Field(default=None, description="API key sent in the x-api-key header")
    api_url: str = Field(default=DEFAULT_LLM_API_URL, description="Messages endpoint URL")
    model: str = Field(default=DEFAULT_LLM_MODEL, description="Model name")
    max_tokens: int = Field(default=4096, gt=0, description="Token budget for ordinary calls")
    article_max_tokens: int = Field(default=8000, gt=0, description="Token budget for article generation")
    temperature: float = Field(default=0.7, ge=0.0, le=1.0, description="Sampling temperature")
    timeout: float = Field(default=60.0, gt=0, description="Per-call timeout in seconds")
    max_retries: int = Field(
        default=1,
        ge=1,
        description="Attempts per call on transport errors (1 = no retry)",
    )
    retry_backoff: float = Field(default=1.0, ge=0, description="Exponential backoff multiplier between retries")
    anthropic_version: str = Field(default="2023-06-01", description="Protocol version header")

    @classmethod
    def from_env(cls, **overrides) -> "LLMConfig":
        """Build a config from NICHEPRESS_LLM_* environment variables."""
        values = {
            "api_key": os.getenv("NICHEPRESS_LLM_API_KEY") or os.getenv("ANTHROPIC_API_KEY"),
            "api_url": os.getenv("NICHEPRESS_LLM_API_URL", DEFAULT_LLM_API_URL),
            "model": os.getenv("NICHEPRESS_LLM_MODEL", DEFAULT_LLM_MODEL),
        }
        if os.getenv("NICHEPRESS_LLM_MAX_TOKENS"):
            values["max_tokens"] = int(os.environ["NICHEPRESS_LLM_MAX_TOKENS"])
        if os.getenv("NICHEPRESS_LLM_TEMPERATURE"):
            values["temperature"] = float(os.environ["NICHEPRESS_LLM_TEMPERATURE"])
        if os.getenv("NICHEPRESS_LLM_MAX_RETRIES"):
            values["max_retries"] = int(os.environ["NICHEPRESS_LLM_MAX_RETRIES"])
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class SuggestConfig(BaseModel):
    """Settings for the autocomplete suggestion endpoint"""

    url: str = Field(
        default="http://suggestqueries.google.com/complete/search",
        description="Suggestion endpoint",
    )
    client: str = Field(default="firefox", description="Value of the 'client' query parameter")
    timeout: float = Field(default=5.0, gt=0, description="Request timeout in seconds")


class PacingConfig(BaseModel):
    """Fixed delays (seconds) between sequential external calls"""

    modifier_delay: float = Field(default=0.2, ge=0, description="Between modifier suggestion calls")
    seed_delay: float = Field(default=0.5, ge=0, description="Between seeds during discovery")
    alphabet_delay: float = Field(default=0.3, ge=0, description="Between alphabet soup calls")
    batch_delay: float = Field(default=1.0, ge=0, description="Between LLM qualification batches")
    niche_delay: float = Field(default=5.0, ge=0, description="Between niches in a batch run")

    @classmethod
    def immediate(cls) -> "PacingConfig":
        """No delays at all. Handy for tests and dry runs."""
        return cls(modifier_delay=0, seed_delay=0, alphabet_delay=0, batch_delay=0, niche_delay=0)
