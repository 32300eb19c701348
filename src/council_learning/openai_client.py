from __future__ import annotations

import time

import requests

from .ollama_client import InferenceResult
from .settings import Settings, settings as default_settings


class OpenAIClient:
    provider = "openai"

    def __init__(self, config: Settings | None = None) -> None:
        self.config = config or default_settings
        self.base_url = self.config.openai_base_url.rstrip("/")
        self.timeout_seconds = self.config.openai_timeout_seconds

    def is_configured(self) -> bool:
        return bool(self.config.openai_api_key.strip())

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.config.openai_api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _extract_text_response(payload: dict) -> str:
        choices = payload.get("choices", [])
        if choices:
            content = choices[0].get("message", {}).get("content", "")
            if isinstance(content, str):
                return content
            if isinstance(content, list):
                return "\n".join(
                    str(part.get("text", ""))
                    for part in content
                    if isinstance(part, dict) and part.get("type") == "text"
                )
        return ""

    def _chat_once(self, system: str, prompt: str, max_tokens: int) -> tuple[str, float]:
        payload = {
            "model": self.config.openai_model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.7,
            "max_tokens": max_tokens,
        }
        start = time.perf_counter()
        response = requests.post(
            f"{self.base_url}/chat/completions",
            headers=self._headers(),
            json=payload,
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        elapsed = time.perf_counter() - start
        return self._extract_text_response(response.json() or {}), elapsed

    def chat(self, system: str, prompt: str, max_tokens: int | None = None) -> InferenceResult:
        if not self.is_configured():
            raise RuntimeError("OpenAI API key is not configured")

        tokens = max_tokens or self.config.advisor_max_tokens
        last_error: Exception | None = None
        for attempt in range(1, self.config.advisor_max_retries + 1):
            try:
                text, latency = self._chat_once(system, prompt, tokens)
                return InferenceResult(
                    text=text,
                    model_used=self.config.openai_model,
                    latency_seconds=latency,
                    attempts=attempt,
                )
            except requests.RequestException as exc:
                last_error = exc

        raise RuntimeError(f"OpenAI chat failed after {self.config.advisor_max_retries} attempts: {last_error}") from last_error
