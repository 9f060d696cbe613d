from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    # Generative service (leave OPENAI_API_KEY unset to run fallback-only)
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY") or None
    openai_model: str = (os.getenv("OPENAI_MODEL") or "gpt-4o-mini").strip() or "gpt-4o-mini"
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    generative_timeout_s: float = float(os.getenv("GENERATIVE_TIMEOUT_S", "20"))
    generative_temperature: float = float(os.getenv("GENERATIVE_TEMPERATURE", "0.3"))

    # Knowledge base (built-in catalog when unset)
    knowledge_base_path: str | None = os.getenv("KNOWLEDGE_BASE_PATH") or None

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
