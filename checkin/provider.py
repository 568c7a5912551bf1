from __future__ import annotations

import os

from .config import CheckinConfig
from .llm_client import GeminiLLMClient, LLMClient, OpenAILLMClient


def build_llm_client(cfg: CheckinConfig) -> LLMClient | None:
    """Oracle transport for `cfg`; None means every oracle query fails over to the heuristic."""
    if not cfg.use_oracle:
        return None
    if cfg.oracle_provider == "gemini":
        return GeminiLLMClient(
            api_key=cfg.gemini_api_key or os.getenv("GEMINI_API_KEY", ""),
            vertexai=cfg.gemini_vertexai,
            project=cfg.gemini_project,
            location=cfg.gemini_location,
            model=cfg.gemini_model,
        )
    if cfg.oracle_provider == "openai":
        return OpenAILLMClient(
            api_key=cfg.openai_api_key or os.getenv("OPENAI_API_KEY", ""),
            model=cfg.openai_model,
            reasoning_effort=cfg.openai_reasoning_effort,
            timeout_ms=cfg.oracle_timeout_ms,
        )
    return None
