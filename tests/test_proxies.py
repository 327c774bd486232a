"""Tests for the OpenAI and Gemini proxy endpoints."""

from __future__ import annotations

import base64
import json
import os
from pathlib import Path

import proxy.openai_server as openai_server
from core.errors import NetworkError
from proxy.gemini_server import UPSTREAM_FAILED as GEMINI_FAILED
from proxy.gemini_server import create_app as create_gemini_app
from proxy.openai_server import OpenAIChatUpstream, UPSTREAM_FAILED
from proxy.openai_server import create_app as create_openai_app
from proxy.settings import ProxySettings
from vision.prompts import DEBUG_DESCRIPTION_PROMPT, OBJECT_LIST_PROMPT

PNG_B64 = base64.b64encode(b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR").decode("ascii")
JPEG_B64 = base64.b64encode(b"\xff\xd8\xff\xe0fake").decode("ascii")


class _FakeChatUpstream:
    def __init__(self, replies: list[str] | None = None, *, fail: bool = False) -> None:
        self.replies = list(replies or ["A cup on a desk.", "COMMAND: ready"])
        self.fail = fail
        self.calls: list[tuple[str, str]] = []

    def complete(self, prompt: str, image_url: str) -> str:
        self.calls.append((prompt, image_url))
        if self.fail:
            raise NetworkError("OpenAI returned HTTP 429", status=429)
        return self.replies.pop(0)


class _FakeVisionUpstream:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, bytes, str]] = []

    def describe(self, prompt: str, image_bytes: bytes, mime_type: str) -> str:
        self.calls.append((prompt, image_bytes, mime_type))
        if self.fail:
            raise RuntimeError("quota exhausted")
        return "cup - center"


def _openai_client(upstream: _FakeChatUpstream, key: str | None = "sk-test"):
    app = create_openai_app(ProxySettings(openai_api_key=key), lambda _settings: upstream)
    return app.test_client()


def _gemini_client(upstream: _FakeVisionUpstream, key: str | None = "g-test"):
    app = create_gemini_app(ProxySettings(gemini_api_key=key), lambda _settings: upstream)
    return app.test_client()


def test_openai_proxy_makes_debug_then_prompt_calls() -> None:
    upstream = _FakeChatUpstream()
    client = _openai_client(upstream)

    response = client.post("/api/openai-proxy", json={"prompt": "center it", "imageBase64": PNG_B64})

    assert response.status_code == 200
    assert response.get_json() == {"text": "COMMAND: ready", "debugDescription": "A cup on a desk."}
    assert [call[0] for call in upstream.calls] == [DEBUG_DESCRIPTION_PROMPT, "center it"]
    assert upstream.calls[0][1] == f"data:image/png;base64,{PNG_B64}"


def test_openai_proxy_without_key_returns_500() -> None:
    client = _openai_client(_FakeChatUpstream(), key=None)

    response = client.post("/api/openai-proxy", json={"prompt": "p", "imageBase64": PNG_B64})

    assert response.status_code == 500
    assert response.get_json() == {"error": "OpenAI API key not set."}


def test_openai_proxy_requires_image() -> None:
    upstream = _FakeChatUpstream()
    client = _openai_client(upstream)

    response = client.post("/api/openai-proxy", json={"prompt": "p"})

    assert response.status_code == 400
    assert response.get_json() == {"error": "No image provided."}
    assert upstream.calls == []


def test_openai_proxy_upstream_failure_returns_500() -> None:
    client = _openai_client(_FakeChatUpstream(fail=True))

    response = client.post("/api/openai-proxy", json={"prompt": "p", "imageBase64": JPEG_B64})

    assert response.status_code == 500
    assert response.get_json() == {"error": UPSTREAM_FAILED}


def test_openai_proxy_sends_cors_headers() -> None:
    client = _openai_client(_FakeChatUpstream())

    response = client.post(
        "/api/openai-proxy",
        json={"prompt": "p", "imageBase64": JPEG_B64},
        headers={"Origin": "http://localhost:5173"},
    )

    assert response.headers.get("Access-Control-Allow-Origin") in ("*", "http://localhost:5173")


def test_openai_upstream_reads_first_choice(monkeypatch) -> None:
    sent: list = []

    class _Response:
        def read(self) -> bytes:
            return json.dumps({"choices": [{"message": {"content": " move left "}}]}).encode()

        def __enter__(self):
            return self

        def __exit__(self, *exc_info):
            return None

    def _urlopen(http_request, timeout=None):
        sent.append(http_request)
        return _Response()

    monkeypatch.setattr(openai_server.request, "urlopen", _urlopen)
    upstream = OpenAIChatUpstream("sk-test", model="gpt-4o", max_tokens=100)

    text = upstream.complete("prompt", "data:image/jpeg;base64,abc")

    payload = json.loads(sent[0].data)
    assert text == "move left"
    assert payload["model"] == "gpt-4o"
    assert payload["max_tokens"] == 100
    assert sent[0].get_header("Authorization") == "Bearer sk-test"


def test_gemini_proxy_uses_default_prompt() -> None:
    upstream = _FakeVisionUpstream()
    client = _gemini_client(upstream)

    response = client.post("/api/gemini-vision", json={"imageBase64": JPEG_B64})

    assert response.status_code == 200
    assert response.get_json() == {"text": "cup - center"}
    prompt, image_bytes, mime_type = upstream.calls[0]
    assert prompt == OBJECT_LIST_PROMPT
    assert image_bytes.startswith(b"\xff\xd8")
    assert mime_type == "image/jpeg"


def test_gemini_proxy_forwards_custom_prompt() -> None:
    upstream = _FakeVisionUpstream()
    client = _gemini_client(upstream)

    client.post("/api/gemini-vision", json={"imageBase64": PNG_B64, "prompt": "find the cup"})

    assert upstream.calls[0][0] == "find the cup"
    assert upstream.calls[0][2] == "image/png"


def test_gemini_proxy_rejects_missing_or_invalid_image() -> None:
    client = _gemini_client(_FakeVisionUpstream())

    missing = client.post("/api/gemini-vision", json={})
    invalid = client.post("/api/gemini-vision", json={"imageBase64": "not*base64!"})

    assert missing.status_code == 400
    assert missing.get_json() == {"error": "No image provided."}
    assert invalid.status_code == 400


def test_gemini_proxy_failures_return_500() -> None:
    failing = _gemini_client(_FakeVisionUpstream(fail=True))
    keyless = create_gemini_app(ProxySettings(gemini_api_key=None)).test_client()

    failed = failing.post("/api/gemini-vision", json={"imageBase64": JPEG_B64})
    unconfigured = keyless.post("/api/gemini-vision", json={"imageBase64": JPEG_B64})

    assert failed.status_code == 500
    assert failed.get_json() == {"error": GEMINI_FAILED}
    assert unconfigured.status_code == 500
    assert unconfigured.get_json() == {"error": "Gemini API key not set."}


def test_settings_load_keys_from_environment(tmp_path: Path) -> None:
    config = {"proxy": {"env_file": str(tmp_path / "missing.env"), "max_tokens": 50}}
    environ = {"VITE_GEMINI_API_KEY": "g-key", "PORT": "6000", "GEMINI_PORT": "oops"}

    settings = ProxySettings.load(config, environ)

    assert settings.openai_api_key is None
    assert settings.gemini_api_key == "g-key"
    assert settings.port == 6000
    assert settings.gemini_port == 5180
    assert settings.max_tokens == 50


def test_settings_read_env_file(tmp_path: Path, monkeypatch) -> None:
    env_file = tmp_path / "keys.env"
    env_file.write_text("OPENAI_API_KEY=sk-from-file\n", encoding="utf-8")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    settings = ProxySettings.load({"proxy": {"env_file": str(env_file)}})

    assert settings.openai_api_key == "sk-from-file"
    assert settings.require_openai_key() == "sk-from-file"
    os.environ.pop("OPENAI_API_KEY", None)
