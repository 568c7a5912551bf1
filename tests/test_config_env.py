from __future__ import annotations

from checkin.config import CheckinConfig


def test_defaults() -> None:
    cfg = CheckinConfig()
    assert cfg.max_followups == 2
    assert cfg.max_turns == 4
    assert cfg.max_identity_attempts == 2
    assert cfg.max_list_items == 5
    assert cfg.use_oracle is False
    assert cfg.oracle_provider == "fake"
    assert cfg.oracle_partial_merge is False
    assert cfg.structured_logging is False


def test_from_env_reads_overrides(monkeypatch) -> None:
    monkeypatch.setenv("CHECKIN_MAX_FOLLOWUPS", "3")
    monkeypatch.setenv("CHECKIN_MAX_TURNS", "6")
    monkeypatch.setenv("ORACLE_TIMEOUT_MS", "2500")
    monkeypatch.setenv("ORACLE_PARTIAL_MERGE", "true")
    monkeypatch.setenv("CHECKIN_USE_ORACLE", "1")
    monkeypatch.setenv("ORACLE_PROVIDER", " OpenAI ")
    monkeypatch.setenv("CARE_TEAM_NAME", "Riverside Ortho")
    cfg = CheckinConfig.from_env()
    assert cfg.max_followups == 3
    assert cfg.max_turns == 6
    assert cfg.oracle_timeout_ms == 2500
    assert cfg.oracle_partial_merge is True
    assert cfg.use_oracle is True
    assert cfg.oracle_provider == "openai"
    assert cfg.care_team_name == "Riverside Ortho"


def test_from_env_tolerates_bad_values(monkeypatch) -> None:
    monkeypatch.setenv("CHECKIN_MAX_FOLLOWUPS", "lots")
    monkeypatch.setenv("CHECKIN_MAX_TURNS", "0")
    monkeypatch.setenv("ORACLE_TIMEOUT_MS", "-50")
    monkeypatch.setenv("ORACLE_PROVIDER", "carrier-pigeon")
    monkeypatch.setenv("CARE_TEAM_NAME", "   ")
    cfg = CheckinConfig.from_env()
    assert cfg.max_followups == 2
    assert cfg.max_turns == 1
    assert cfg.oracle_timeout_ms == 0
    assert cfg.oracle_provider == "fake"
    assert cfg.care_team_name == "CareLink"
