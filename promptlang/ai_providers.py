from __future__ import annotations
import time
from typing import Callable, Dict, List, Optional, Sequence, Union

from loguru import logger

from .config import Settings
from .errors import ModelUnavailable
from .schemas import Turn

# Optional third-party SDK imports guarded to avoid hard deps
try:
    from openai import OpenAI as _OpenAIClient  # type: ignore
except Exception:  # pragma: no cover
    _OpenAIClient = None

try:
    import anthropic  # type: ignore
except Exception:  # pragma: no cover
    anthropic = None

try:
    import cohere as _cohere  # type: ignore
except Exception:  # pragma: no cover
    _cohere = None

try:
    import requests  # type: ignore
except Exception:  # pragma: no cover
    requests = None


def _with_retries(fn, retries: int = 2, base_delay: float = 0.5):
    last_exc = None
    for i in range(retries + 1):
        try:
            return fn()
        except Exception as e:  # pragma: no cover - network variability
            last_exc = e
            if i == retries:
                break
            time.sleep(base_delay * (2 ** i))
    raise last_exc  # type: ignore


def _messages(direction: str, history: Sequence[Turn]) -> List[Dict[str, str]]:
    """Prior turns oldest first as user/assistant pairs, then the new direction."""
    messages: List[Dict[str, str]] = []
    for turn in history:
        messages.append({"role": "user", "content": turn.direction})
        messages.append({"role": "assistant", "content": turn.answer})
    messages.append({"role": "user", "content": direction})
    return messages


def _require_answer(provider: str, content: Optional[str]) -> str:
    if not content or not content.strip():
        raise ModelUnavailable(f"{provider}: empty response")
    return content


class ModelClient:
    """Model-client collaborator: `ask(direction, history) -> answer`.

    Network errors and empty answers raise ModelUnavailable.
    """
    name: str = "base"

    def ask(self, direction: str, history: Sequence[Turn]) -> str:  # pragma: no cover - abstract
        raise NotImplementedError

    def _call(self, fn) -> str:
        try:
            content = _with_retries(fn, retries=self.settings.retries)
        except ModelUnavailable:
            raise
        except Exception as e:
            raise ModelUnavailable(f"{self.name}: {e}") from e
        return _require_answer(self.name, content)


class OpenAIProvider(ModelClient):
    name = "openai"

    def __init__(self, settings: Settings) -> None:
        key = settings.api_key("openai")
        if not _OpenAIClient or not key:
            raise ModelUnavailable("OpenAI not available: missing client or OPENAI_API_KEY")
        self.settings = settings
        self.client = _OpenAIClient(api_key=key)
        self.model = settings.model or "gpt-4o"

    def ask(self, direction: str, history: Sequence[Turn]) -> str:
        def _call():
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=_messages(direction, history),
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
                timeout=self.settings.model_timeout_s,
            )
            return resp.choices[0].message.content if resp and resp.choices else ""
        return self._call(_call)


class AnthropicProvider(ModelClient):
    name = "anthropic"

    def __init__(self, settings: Settings) -> None:
        key = settings.api_key("anthropic")
        if not anthropic or not key:
            raise ModelUnavailable("Anthropic not available")
        self.settings = settings
        self.client = anthropic.Anthropic(api_key=key)
        self.model = settings.model or "claude-sonnet-4-5"

    def ask(self, direction: str, history: Sequence[Turn]) -> str:
        def _call():
            msg = self.client.messages.create(
                model=self.model,
                max_tokens=self.settings.max_tokens,
                temperature=self.settings.temperature,
                messages=_messages(direction, history),
                timeout=self.settings.model_timeout_s,
            )
            return "".join(part.text for part in msg.content if getattr(part, "type", "") == "text")
        return self._call(_call)


class CohereProvider(ModelClient):
    name = "cohere"

    def __init__(self, settings: Settings) -> None:
        key = settings.api_key("cohere")
        if not _cohere or not key:
            raise ModelUnavailable("Cohere not available")
        self.settings = settings
        self.client = _cohere.ClientV2(api_key=key)
        self.model = settings.model or "command-r-plus"

    def ask(self, direction: str, history: Sequence[Turn]) -> str:
        def _call():
            resp = self.client.chat(
                model=self.model,
                messages=_messages(direction, history),
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
            )
            return "".join(getattr(part, "text", "") for part in resp.message.content or [])
        return self._call(_call)


class OllamaProvider(ModelClient):
    name = "ollama"

    def __init__(self, settings: Settings) -> None:
        if not requests or not settings.ollama_host:
            raise ModelUnavailable("Ollama not available")
        self.settings = settings
        self.base = settings.ollama_host.rstrip("/")
        self.model = settings.model or "llama3.3"

    def ask(self, direction: str, history: Sequence[Turn]) -> str:
        body = {
            "model": self.model,
            "messages": _messages(direction, history),
            "stream": False,
            "options": {"temperature": self.settings.temperature},
        }

        def _call():
            r = requests.post(f"{self.base}/api/chat", json=body, timeout=self.settings.model_timeout_s)
            r.raise_for_status()
            data = r.json()
            if isinstance(data, dict):
                return (data.get("message") or {}).get("content", "")
            return ""
        return self._call(_call)


Responder = Callable[[str, Sequence[Turn]], str]


class ScriptedProvider(ModelClient):
    """Offline provider for dry runs and tests.

    Answers come from a fixed sequence (consumed in order), a callable, or, in
    echo mode, the direction itself. Every request is recorded in `calls`.
    """
    name = "scripted"

    def __init__(self, answers: Union[Sequence[str], Responder, None] = None, echo: bool = False) -> None:
        self.settings = Settings(retries=0)
        self.echo = echo
        self.responder: Optional[Responder] = answers if callable(answers) else None
        self.answers: List[str] = [] if answers is None or callable(answers) else list(answers)
        self.calls: List[tuple] = []

    def ask(self, direction: str, history: Sequence[Turn]) -> str:
        self.calls.append((direction, list(history)))
        if self.responder is not None:
            return _require_answer(self.name, self.responder(direction, history))
        if self.answers:
            return _require_answer(self.name, self.answers.pop(0))
        if self.echo:
            return _require_answer(self.name, f"[dry_run] {direction}")
        raise ModelUnavailable("scripted: no answer left")


_PROVIDERS = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "cohere": CohereProvider,
    "ollama": OllamaProvider,
}


def select_provider(settings: Settings) -> Optional[ModelClient]:
    """Select a provider from settings.provider, or the first available one.

    Precedence: OpenAI → Anthropic → Cohere → Ollama
    """
    forced = (settings.provider or "").strip().lower()
    if forced in ("scripted", "echo"):
        return ScriptedProvider(echo=True)

    def _instantiate(name: str) -> Optional[ModelClient]:
        cls = _PROVIDERS.get(name)
        if cls is None:
            logger.warning("[model] unknown provider '{}'", name)
            return None
        try:
            return cls(settings)
        except ModelUnavailable as e:
            logger.debug("[model] {}", e)
            return None

    if forced:
        return _instantiate(forced)

    for name in _PROVIDERS:
        prov = _instantiate(name)
        if prov:
            return prov
    return None
