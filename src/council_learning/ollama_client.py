from __future__ import annotations

from dataclasses import dataclass
import time

import requests

from .settings import Settings, settings as default_settings


@dataclass
class InferenceResult:
    text: str
    model_used: str
    latency_seconds: float
    attempts: int


class OllamaClient:
    provider = "ollama"

    PREFERRED_MODELS = ["qwen2.5:14b", "qwen2.5", "llama3.1:8b", "llama3.2", "mistral"]

    def __init__(self, config: Settings | None = None) -> None:
        self.config = config or default_settings
        self.base_url = self.config.ollama_base_url.rstrip("/")
        self.timeout_seconds = self.config.ollama_timeout_seconds
        self._model: str | None = self.config.ollama_model or None

    def is_configured(self) -> bool:
        return bool(self.base_url)

    def list_models(self) -> list[str]:
        response = requests.get(f"{self.base_url}/api/tags", timeout=self.timeout_seconds)
        response.raise_for_status()
        payload = response.json() or {}
        models = payload.get("models", [])
        return [model.get("name", "") for model in models if model.get("name")]

    def resolve_model(self) -> str:
        if self._model:
            return self._model

        installed = self.list_models()
        for target in self.PREFERRED_MODELS:
            matches = [name for name in installed if name == target or name.startswith(target + ":")]
            if matches:
                self._model = matches[0]
                return self._model
        if installed:
            self._model = installed[0]
            return self._model
        raise RuntimeError("No Ollama models available. Pull at least one model with `ollama pull <model>`.")

    def _chat_once(self, model: str, system: str, prompt: str, max_tokens: int) -> tuple[str, float]:
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "format": "json",
            "stream": False,
            "options": {"num_predict": max_tokens, "temperature": 0.7},
        }
        start = time.perf_counter()
        response = requests.post(f"{self.base_url}/api/chat", json=payload, timeout=self.timeout_seconds)
        response.raise_for_status()
        latency = time.perf_counter() - start
        body = response.json() or {}
        message = body.get("message") or {}
        return str(message.get("content", "")), latency

    def chat(self, system: str, prompt: str, max_tokens: int | None = None) -> InferenceResult:
        model = self.resolve_model()
        tokens = max_tokens or self.config.advisor_max_tokens
        last_error: Exception | None = None

        for attempt in range(1, self.config.advisor_max_retries + 1):
            try:
                text, latency = self._chat_once(model, system, prompt, tokens)
                return InferenceResult(text=text, model_used=model, latency_seconds=latency, attempts=attempt)
            except requests.RequestException as exc:
                last_error = exc

        raise RuntimeError(f"Ollama chat failed after {self.config.advisor_max_retries} attempts: {last_error}") from last_error
