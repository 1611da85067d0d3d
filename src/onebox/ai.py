"""Summary: Language model backends used for lead classification.

Importance: Lets the classifier switch between local, hosted, and offline models.
Alternatives: Call provider SDKs directly inside the classifier.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from onebox.config import AppConfig
from onebox.exceptions import AiProviderError, ConfigError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You help a sales team triage and answer replies to outreach emails. Reply with JSON only."


@dataclass(frozen=True)
class Completion:
    """Summary: Text returned by a backend for one classification prompt.

    Importance: Carries latency and model name for debug logging.
    Alternatives: Return bare strings.
    """

    text: str
    latency_ms: int
    model: str


class AiProvider(ABC):
    """Summary: Base class for classification backends.

    Importance: Times every call the same way regardless of vendor.
    Alternatives: Let each backend measure its own latency.
    """

    name = "provider"

    def __init__(self, model: str, timeout: float = 30.0) -> None:
        self.model = model
        self.timeout = timeout

    def complete(self, prompt: str) -> Completion:
        """Summary: Send a prompt and return the backend's answer.

        Importance: Is the single entry point the classifier depends on.
        Alternatives: Expose vendor-specific request methods.
        """

        started = time.monotonic()
        text = self._generate(prompt)
        latency_ms = int((time.monotonic() - started) * 1000)
        logger.debug("%s answered in %sms", self.name, latency_ms)
        return Completion(text=text, latency_ms=latency_ms, model=self.model)

    @abstractmethod
    def _generate(self, prompt: str) -> str:
        """Return the raw answer text for a prompt."""


class MockAiProvider(AiProvider):
    """Summary: Offline backend that always gives the same answer.

    Importance: Exercises the AI path in tests and demos without a network.
    Alternatives: Run a small local model during development.
    """

    name = "mock"

    def __init__(self, reply: str = "Uncategorized") -> None:
        super().__init__(model="mock")
        self.reply = reply

    def _generate(self, prompt: str) -> str:
        return self.reply


class OllamaProvider(AiProvider):
    """Summary: Backend for a local Ollama server.

    Importance: Keeps mail content on the operator's own hardware.
    Alternatives: Bind llama.cpp directly.
    """

    name = "ollama"

    def __init__(self, base_url: str, model: str, timeout: float = 30.0) -> None:
        super().__init__(model, timeout)
        self.base_url = base_url.rstrip("/")

    def _generate(self, prompt: str) -> str:
        raw = _post_json(
            f"{self.base_url}/api/generate",
            {"model": self.model, "system": SYSTEM_PROMPT, "prompt": prompt, "stream": False},
            {},
            self,
        )
        return str(raw.get("response", ""))


class OpenAiProvider(AiProvider):
    """Summary: Backend for OpenAI chat completions.

    Importance: Offers a hosted model when local inference is unavailable.
    Alternatives: Use the official openai package.
    """

    name = "openai"
    url = "https://api.openai.com/v1/chat/completions"

    def __init__(self, api_key: str, model: str, timeout: float = 30.0) -> None:
        super().__init__(model, timeout)
        self._api_key = api_key

    def _generate(self, prompt: str) -> str:
        raw = _post_json(
            self.url,
            {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                "temperature": 0.0,
            },
            {"Authorization": f"Bearer {self._api_key}"},
            self,
        )
        try:
            content = raw["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AiProviderError(self.name, "response has no message content") from exc
        if not isinstance(content, str):
            # Refusals come back with null content.
            raise AiProviderError(self.name, "response message content is empty")
        return content


class GeminiProvider(AiProvider):
    """Summary: Backend for Google's Gemini generateContent endpoint.

    Importance: Supports the hosted model most replies were tuned against.
    Alternatives: Use the google-generativeai SDK.
    """

    name = "gemini"

    def __init__(self, api_key: str, model: str, timeout: float = 30.0) -> None:
        super().__init__(model, timeout)
        self._api_key = api_key

    @property
    def url(self) -> str:
        model = urllib.parse.quote(self.model, safe="")
        key = urllib.parse.quote(self._api_key, safe="")
        return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={key}"

    def _generate(self, prompt: str) -> str:
        raw = _post_json(
            self.url,
            {
                "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {"temperature": 0.0},
            },
            {},
            self,
        )
        try:
            parts = raw["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AiProviderError(self.name, "response has no candidates") from exc
        return "".join(part.get("text", "") for part in parts)


def _post_json(
    url: str, payload: dict[str, Any], headers: dict[str, str], provider: AiProvider
) -> dict[str, Any]:
    request = urllib.request.Request(
        url=url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=provider.timeout) as response:
            return json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        raise AiProviderError(provider.name, f"HTTP {exc.code}") from exc
    except (urllib.error.URLError, OSError) as exc:
        raise AiProviderError(provider.name, str(exc)) from exc
    except json.JSONDecodeError as exc:
        raise AiProviderError(provider.name, "response is not JSON") from exc


def _require(value: str | None, variable: str) -> str:
    if not value:
        raise ConfigError(f"{variable} is required for this AI provider")
    return value


@dataclass(frozen=True)
class AiProviderFactory:
    """Summary: Selects the classification backend from configuration.

    Importance: Validates credentials once at startup.
    Alternatives: Resolve the backend lazily on the first message.
    """

    config: AppConfig

    def _builders(self) -> dict[str, Callable[[], AiProvider]]:
        config = self.config
        return {
            "mock": MockAiProvider,
            "ollama": lambda: OllamaProvider(config.ollama_url, config.ollama_model),
            "openai": lambda: OpenAiProvider(
                _require(config.openai_api_key, "OPENAI_API_KEY"), config.openai_model
            ),
            "gemini": lambda: GeminiProvider(
                _require(config.gemini_api_key, "GEMINI_API_KEY"), config.gemini_model
            ),
        }

    def build(self) -> AiProvider | None:
        """Summary: Construct the configured backend.

        Importance: Returns None for "rules", which classifies by keywords alone.
        Alternatives: Model the keyword rules as one more backend.
        """

        if self.config.ai_provider == "rules":
            return None
        builder = self._builders().get(self.config.ai_provider)
        if builder is None:
            raise ConfigError(f"Unknown AI provider: {self.config.ai_provider}")
        provider = builder()
        logger.info("Classifying with %s (%s)", provider.name, provider.model)
        return provider

    def model_name(self) -> str:
        names = {
            "ollama": self.config.ollama_model,
            "openai": self.config.openai_model,
            "gemini": self.config.gemini_model,
        }
        return names.get(self.config.ai_provider, self.config.ai_provider)
