from __future__ import annotations

import os
from dataclasses import dataclass


def _getenv_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _getenv_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


@dataclass(frozen=True, slots=True)
class CheckinConfig:
    # Call budgets
    max_followups: int = 2
    max_turns: int = 4
    max_identity_attempts: int = 2
    max_list_items: int = 5

    # Oracle integration (provider-agnostic; tests default to deterministic fakes)
    use_oracle: bool = False
    oracle_provider: str = "fake"  # fake | openai | gemini
    oracle_timeout_ms: int = 6000
    context_timeout_ms: int = 2000
    # False: a reply with no control fields is discarded entirely.
    # True: well-typed fields are salvaged on top of the fallback decision.
    oracle_partial_merge: bool = False
    openai_api_key: str = ""
    openai_model: str = "gpt-5-mini"
    openai_reasoning_effort: str = "minimal"
    gemini_api_key: str = ""
    gemini_vertexai: bool = False
    gemini_project: str = ""
    gemini_location: str = "global"
    gemini_model: str = "gemini-3-flash-preview"

    # Persona / output
    care_team_name: str = "CareLink"
    structured_logging: bool = False
    summary_jsonl_path: str = ""

    @staticmethod
    def from_env() -> "CheckinConfig":
        oracle_provider = _getenv_str("ORACLE_PROVIDER", "fake").strip().lower()
        if oracle_provider not in {"fake", "openai", "gemini"}:
            oracle_provider = "fake"

        return CheckinConfig(
            max_followups=max(1, _getenv_int("CHECKIN_MAX_FOLLOWUPS", 2)),
            max_turns=max(1, _getenv_int("CHECKIN_MAX_TURNS", 4)),
            max_identity_attempts=max(1, _getenv_int("CHECKIN_MAX_IDENTITY_ATTEMPTS", 2)),
            max_list_items=max(1, _getenv_int("CHECKIN_MAX_LIST_ITEMS", 5)),
            use_oracle=_getenv_bool("CHECKIN_USE_ORACLE", False),
            oracle_provider=oracle_provider,
            oracle_timeout_ms=max(0, _getenv_int("ORACLE_TIMEOUT_MS", 6000)),
            context_timeout_ms=max(0, _getenv_int("CONTEXT_TIMEOUT_MS", 2000)),
            oracle_partial_merge=_getenv_bool("ORACLE_PARTIAL_MERGE", False),
            openai_api_key=_getenv_str("OPENAI_API_KEY", ""),
            openai_model=_getenv_str("OPENAI_MODEL", "gpt-5-mini"),
            openai_reasoning_effort=_getenv_str("OPENAI_REASONING_EFFORT", "minimal"),
            gemini_api_key=_getenv_str("GEMINI_API_KEY", ""),
            gemini_vertexai=_getenv_bool("GEMINI_VERTEXAI", False),
            gemini_project=_getenv_str("GEMINI_PROJECT", ""),
            gemini_location=_getenv_str("GEMINI_LOCATION", "global"),
            gemini_model=_getenv_str("GEMINI_MODEL", "gemini-3-flash-preview"),
            care_team_name=_getenv_str("CARE_TEAM_NAME", "CareLink"),
            structured_logging=_getenv_bool("CHECKIN_STRUCTURED_LOGGING", False),
            summary_jsonl_path=_getenv_str("SUMMARY_JSONL_PATH", ""),
        )
