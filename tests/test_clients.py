"""
Tests for the Ollama and OpenAI chat clients.
"""
import pytest
import requests

from council_learning import ollama_client, openai_client
from council_learning.ollama_client import OllamaClient
from council_learning.openai_client import OpenAIClient


class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


class TestOllamaClient:

    def test_prefers_known_models(self, config, monkeypatch):
        monkeypatch.setattr(
            ollama_client.requests, "get",
            lambda url, timeout: FakeResponse({"models": [{"name": "llama3.2:latest"}, {"name": "qwen2.5:14b"}]}),
        )
        assert OllamaClient(config).resolve_model() == "qwen2.5:14b"

    def test_chat_returns_message_content(self, config, monkeypatch):
        monkeypatch.setattr(
            ollama_client.requests, "post",
            lambda url, json, timeout: FakeResponse({"message": {"content": '{"message": "ok"}'}}),
        )
        client = OllamaClient(config.model_copy(update={"ollama_model": "mistral"}))
        result = client.chat("system", "prompt")
        assert result.text == '{"message": "ok"}'
        assert result.model_used == "mistral"
        assert result.attempts == 1

    def test_no_models_installed(self, config, monkeypatch):
        monkeypatch.setattr(ollama_client.requests, "get", lambda url, timeout: FakeResponse({"models": []}))
        with pytest.raises(RuntimeError):
            OllamaClient(config).resolve_model()


class TestOpenAIClient:

    def test_requires_api_key(self, config):
        client = OpenAIClient(config.model_copy(update={"openai_api_key": ""}))
        assert not client.is_configured()
        with pytest.raises(RuntimeError):
            client.chat("system", "prompt")

    def test_chat_extracts_content(self, config, monkeypatch):
        monkeypatch.setattr(
            openai_client.requests, "post",
            lambda url, headers, json, timeout: FakeResponse(
                {"choices": [{"message": {"content": '{"message": "hi", "confidence": 0.4}'}}]}
            ),
        )
        client = OpenAIClient(config.model_copy(update={"openai_api_key": "sk-test"}))
        assert client.chat("system", "prompt").text == '{"message": "hi", "confidence": 0.4}'

    def test_retries_then_fails(self, config, monkeypatch):
        attempts = []

        def refuse(url, headers, json, timeout):
            attempts.append(url)
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(openai_client.requests, "post", refuse)
        client = OpenAIClient(config.model_copy(update={"openai_api_key": "sk-test", "advisor_max_retries": 3}))
        with pytest.raises(RuntimeError):
            client.chat("system", "prompt")
        assert len(attempts) == 3
