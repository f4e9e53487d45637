import json
import logging

import pytest
from pydantic import ValidationError

from llm_core.config.settings import Settings, load_settings
from llm_core.infrastructure.logging.logger import JsonFormatter, get_logger, log_event
from llm_core.providers.registry import default_ollama_config


def test_settings_defaults_and_overrides(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("LLM_CORE_CONFIG_FILE", raising=False)
    monkeypatch.setenv("OLLAMA_BASE_URL", "http://env-host:11434/v1")
    cfg = load_settings(read_timeout=5)
    assert cfg.read_timeout == 5
    assert cfg.ollama_base_url == "http://env-host:11434/v1"
    assert default_ollama_config(cfg).base_url == "http://env-host:11434/v1"
    assert default_ollama_config(cfg).read_timeout == 5


def test_settings_from_yaml(monkeypatch, tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text("default_provider: perplexity\nlog_level: debug\n", encoding="utf-8")
    monkeypatch.setenv("LLM_CORE_CONFIG_FILE", str(path))
    monkeypatch.delenv("DEFAULT_PROVIDER", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    cfg = Settings()
    assert cfg.default_provider == "perplexity"
    assert cfg.log_level == "DEBUG"


def test_settings_validation():
    with pytest.raises(ValidationError):
        Settings(openai_api_key="short")
    with pytest.raises(ValidationError):
        Settings(log_level="chatty")
    with pytest.raises(ValidationError):
        Settings(connect_timeout=0)


def test_json_formatter_merges_fields():
    log = get_logger("tests.logging")
    assert log.name == "llm_core.tests.logging"
    record = log.makeRecord(log.name, logging.WARNING, __file__, 1, "Provider failed", None, None,
                            extra={"extra": {"provider": "openai", "status": 429}})
    data = json.loads(JsonFormatter().format(record))
    assert data["level"] == "WARNING"
    assert data["msg"] == "Provider failed"
    assert data["provider"] == "openai"
    assert data["status"] == 429
    assert data["ts"].endswith("Z")


def test_json_formatter_redacts_long_messages():
    record = logging.LogRecord("llm_core", logging.INFO, __file__, 1, "x" * 100, None, None)
    data = json.loads(JsonFormatter(redact=True).format(record))
    assert data["msg"] == "x" * 64


def test_log_event_drops_empty_fields(caplog):
    log = get_logger("llm_core.tests")
    with caplog.at_level(logging.INFO, logger="llm_core"):
        log_event(log, logging.INFO, "hello", provider="ollama", code=None)
    record = caplog.records[-1]
    assert record.extra == {"provider": "ollama"}
