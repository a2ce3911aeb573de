from __future__ import annotations
import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "promptlang" / "config.json"

DEFAULT_CONFIG_FILE = """{
    "api_key_openai": "",
    "api_key_anthropic": "",
    "api_key_cohere": ""
}
"""

# env var -> settings field
ENV_VARS = {
    "PROMPTLANG_AI_PROVIDER": "provider",
    "PROMPTLANG_AI_MODEL": "model",
    "PROMPTLANG_TEMPERATURE": "temperature",
    "PROMPTLANG_MAX_TOKENS": "max_tokens",
    "PROMPTLANG_MODEL_TIMEOUT_S": "model_timeout_s",
    "PROMPTLANG_COMMAND_TIMEOUT_S": "command_timeout_s",
    "PROMPTLANG_RETRIES": "retries",
    "PROMPTLANG_STATE_DIR": "state_dir",
    "OLLAMA_HOST": "ollama_host",
}

# provider -> env var holding its key
API_KEY_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "cohere": "COHERE_API_KEY",
}


class Settings(BaseModel):
    """Runtime configuration: model provider, timeouts, retries, state directory."""
    model_config = ConfigDict(extra="ignore")

    provider: Optional[str] = None
    model: Optional[str] = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, gt=0)
    model_timeout_s: float = Field(default=60.0, gt=0)
    command_timeout_s: Optional[float] = Field(default=120.0, gt=0)
    retries: int = Field(default=2, ge=0)
    state_dir: str = "./.promptlang_state"
    ollama_host: Optional[str] = None
    api_key_openai: Optional[str] = None
    api_key_anthropic: Optional[str] = None
    api_key_cohere: Optional[str] = None

    def api_key(self, provider: str) -> Optional[str]:
        """Environment wins over the config file; empty strings count as unset."""
        var = API_KEY_VARS.get(provider)
        from_env = os.getenv(var) if var else None
        return from_env or getattr(self, f"api_key_{provider}", None) or None


def load_settings(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None,
                  **overrides: Any) -> Settings:
    """Config file (if present), then environment variables, then explicit overrides."""
    env = os.environ if env is None else env
    if path is None:
        path = Path(env["PROMPTLANG_CONFIG"]) if env.get("PROMPTLANG_CONFIG") else DEFAULT_CONFIG_PATH
    data: Dict[str, Any] = {}
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Config file {path} could not be read: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")
    for var, fld in ENV_VARS.items():
        if env.get(var):
            data[fld] = env[var]
    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
