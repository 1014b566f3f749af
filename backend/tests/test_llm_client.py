import asyncio

import pytest
import requests

from interview_copilot.errors import ClassifierError, ClassifierTimeoutError
from interview_copilot.models.app_settings import ClassifierSettings
from interview_copilot.services import llm_client
from interview_copilot.services.llm_client import (
    FailoverChatClient,
    LlamaChatClient,
    OpenAICompatibleClient,
    build_chat_client,
    call_classifier,
    parse_json_response,
    strip_code_fences,
)

from fakes import FakeChatClient, slow_response


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```\n{"a": 1}```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


def test_parse_json_response_accepts_fenced_and_wrapped_json():
    assert parse_json_response('```json\n{"escalate": true}\n```') == {"escalate": True}
    assert parse_json_response('Sure! {"host": "speaker_0"} hope it helps') == {"host": "speaker_0"}


@pytest.mark.parametrize("raw", ["", "not json", "[1, 2]", '"text"', "{broken"])
def test_parse_json_response_rejects_non_objects(raw):
    with pytest.raises(ClassifierError):
        parse_json_response(raw)


def test_call_classifier_times_out():
    client = FakeChatClient([slow_response(0.5)])

    with pytest.raises(ClassifierTimeoutError):
        asyncio.run(call_classifier(client, "sys", "user", timeout=0.05))


def test_call_classifier_wraps_unexpected_errors():
    client = FakeChatClient([OSError("socket closed")])

    with pytest.raises(ClassifierError, match="socket closed"):
        asyncio.run(call_classifier(client, "sys", "user", timeout=1.0))


def test_call_classifier_passes_budget():
    client = FakeChatClient(['{"ok": true}'])

    text = asyncio.run(call_classifier(client, "sys", "user", timeout=1.0, max_tokens=100))

    assert text == '{"ok": true}'
    assert client.request_history[0]["max_tokens"] == 100


def test_failover_uses_next_provider():
    first = FakeChatClient([ClassifierError("rate limited")], name="primary")
    second = FakeChatClient(['{"ok": true}'], name="secondary")

    client = FailoverChatClient([first, second])

    assert client.complete("s", "u") == '{"ok": true}'
    assert first.call_count == 1 and second.call_count == 1


def test_failover_exhausted():
    client = FailoverChatClient([FakeChatClient([ClassifierError("x")]), FakeChatClient([ClassifierError("y")])])

    with pytest.raises(ClassifierError, match="exhausted"):
        client.complete("s", "u")


class _Response:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def test_openai_compatible_client_posts_chat_completion(monkeypatch):
    captured = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        captured.update(url=url, headers=headers, body=json, timeout=timeout)
        return _Response(200, {"choices": [{"message": {"content": '{"escalate": false}'}}]})

    monkeypatch.setattr(requests, "post", fake_post)
    client = OpenAICompatibleClient("https://api.example.com/v1/", "small-model", "secret", timeout=12)

    assert client.complete("system text", "user text", max_tokens=64) == '{"escalate": false}'
    assert captured["url"] == "https://api.example.com/v1/chat/completions"
    assert captured["headers"]["Authorization"] == "Bearer secret"
    assert captured["body"]["max_tokens"] == 64
    assert captured["body"]["messages"][0] == {"role": "system", "content": "system text"}
    assert captured["timeout"] == 12


def test_openai_compatible_client_http_error(monkeypatch):
    monkeypatch.setattr(requests, "post", lambda *a, **k: _Response(429, text="slow down"))
    client = OpenAICompatibleClient("https://api.example.com/v1", "m", "k")

    with pytest.raises(ClassifierError, match="429"):
        client.complete("s", "u")


def test_build_chat_client_hosted_with_fallback(monkeypatch):
    monkeypatch.setenv("PRIMARY_KEY", "k1")
    monkeypatch.setenv("BACKUP_KEY", "k2")
    cfg = ClassifierSettings(
        provider="openai",
        model="primary-model",
        base_url="https://a.example.com/v1",
        api_key_env="PRIMARY_KEY",
        fallbacks=[
            ClassifierSettings(
                provider="openai", model="backup-model", base_url="https://b.example.com/v1", api_key_env="BACKUP_KEY"
            )
        ],
    )

    client = build_chat_client(cfg)

    assert isinstance(client, FailoverChatClient)
    assert [c.name for c in client.clients] == ["primary-model", "backup-model"]


def test_build_chat_client_requires_api_key(monkeypatch):
    monkeypatch.delenv("MISSING_KEY", raising=False)
    cfg = ClassifierSettings(provider="openai", model="m", base_url="https://x", api_key_env="MISSING_KEY")

    with pytest.raises(ValueError):
        build_chat_client(cfg)


def test_local_client_without_model_fails_as_classifier_error(tmp_path, monkeypatch):
    monkeypatch.setattr(llm_client, "Llama", object)
    client = LlamaChatClient(model_path=None, models_dir=tmp_path / "llm")

    with pytest.raises(ClassifierError, match="No local LLM model"):
        client.complete("s", "u")
