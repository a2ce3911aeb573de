import json

import pytest

from promptlang.config import Settings, load_settings
from promptlang.errors import ConfigError


def test_defaults_without_file(tmp_path):
    s = load_settings(tmp_path / "missing.json", env={})
    assert s.provider is None
    assert s.retries == 2
    assert s.model_timeout_s == 60.0


def test_file_then_env_then_overrides(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"api_key_openai": "sk-file", "retries": 5, "model": "from-file"}))
    env = {"PROMPTLANG_AI_MODEL": "from-env", "PROMPTLANG_MODEL_TIMEOUT_S": "2.5"}
    s = load_settings(path, env=env, retries=1)
    assert s.api_key_openai == "sk-file"
    assert s.model == "from-env"
    assert s.model_timeout_s == 2.5
    assert s.retries == 1


def test_config_path_from_environment(tmp_path):
    path = tmp_path / "c.json"
    path.write_text('{"provider": "scripted"}')
    assert load_settings(env={"PROMPTLANG_CONFIG": str(path)}).provider == "scripted"


def test_invalid_values_raise_config_error(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "none.json", env={"PROMPTLANG_RETRIES": "many"})
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ConfigError):
        load_settings(bad, env={})


def test_environment_key_wins(monkeypatch):
    monkeypatch.setenv("COHERE_API_KEY", "from-env")
    s = Settings(api_key_cohere="from-file", api_key_anthropic="")
    assert s.api_key("cohere") == "from-env"
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    assert s.api_key("anthropic") is None
