"""
Runtime settings, read from environment variables (a .env file is loaded
by the CLI through python-dotenv).
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from .fetcher import DEFAULT_BASE_URL, DEFAULT_INDEX_PATH
from .extractor import DEFAULT_TICKET_PREFIX
from .rate_limiter import DEFAULT_MIN_INTERVAL


class Settings(BaseModel):
    """Paths, endpoints and tuning knobs for one pipeline run."""
    base_url: str = DEFAULT_BASE_URL
    index_path: str = DEFAULT_INDEX_PATH
    ticket_prefix: str = DEFAULT_TICKET_PREFIX

    ai_token: Optional[str] = None
    ai_model: Optional[str] = None
    ai_base_url: Optional[str] = None
    llm_provider: Optional[str] = None
    min_interval: float = DEFAULT_MIN_INTERVAL

    cache_path: Path = Path("data") / ".ai-cache.json"
    output_path: Path = Path("data") / "releases.json"
    max_workers: int = 8

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """
        Build settings from the environment; keyword overrides win.

        Environment variables:
            AI_TOKEN / OPENAI_API_KEY, AI_MODEL, AI_BASE_URL, LLM_PROVIDER,
            RELEASE_NOTES_BASE_URL, RELEASE_NOTES_INDEX_PATH, TICKET_PREFIX,
            AI_MIN_INTERVAL, RELEASE_CACHE_PATH, RELEASE_OUTPUT_PATH
        """
        env = {
            "ai_token": os.getenv("AI_TOKEN") or os.getenv("OPENAI_API_KEY"),
            "ai_model": os.getenv("AI_MODEL"),
            "ai_base_url": os.getenv("AI_BASE_URL"),
            "llm_provider": os.getenv("LLM_PROVIDER"),
            "base_url": os.getenv("RELEASE_NOTES_BASE_URL"),
            "index_path": os.getenv("RELEASE_NOTES_INDEX_PATH"),
            "ticket_prefix": os.getenv("TICKET_PREFIX"),
            "min_interval": os.getenv("AI_MIN_INTERVAL"),
            "cache_path": os.getenv("RELEASE_CACHE_PATH"),
            "output_path": os.getenv("RELEASE_OUTPUT_PATH"),
        }
        values = {k: v for k, v in env.items() if v}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
