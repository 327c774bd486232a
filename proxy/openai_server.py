"""``POST /api/openai-proxy``: forwards a frame and prompt to OpenAI chat completions."""

from __future__ import annotations

import json
from typing import Any, Callable, Protocol
from urllib import error, request

from flask import Flask, jsonify, request as flask_request
from flask_cors import CORS

from config import ConfigController
from core.errors import NetworkError, UpstreamConfigError
from core.logging import log_error, log_info, logger, set_level
from proxy.settings import MAX_BODY_BYTES, ProxySettings, detect_mime_type
from vision.prompts import DEBUG_DESCRIPTION_PROMPT

CHAT_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"
UPSTREAM_FAILED = "Failed to contact OpenAI."
NO_IMAGE = "No image provided."
NO_PROMPT = "No prompt provided."


class ChatUpstream(Protocol):
    def complete(self, prompt: str, image_url: str) -> str: ...


class OpenAIChatUpstream:
    """Single-turn vision chat completion over HTTPS."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gpt-4o",
        max_tokens: int = 100,
        timeout_s: float = 60.0,
        url: str = CHAT_COMPLETIONS_URL,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._max_tokens = max_tokens
        self._timeout_s = timeout_s
        self._url = url

    def complete(self, prompt: str, image_url: str) -> str:
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
            "max_tokens": self._max_tokens,
        }
        data = json.dumps(payload).encode("utf-8")
        http_request = request.Request(
            self._url,
            data=data,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with request.urlopen(http_request, timeout=self._timeout_s) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raise NetworkError(f"OpenAI returned HTTP {exc.code}", status=exc.code) from exc
        except (error.URLError, OSError) as exc:
            raise NetworkError(f"OpenAI unreachable: {exc}") from exc
        try:
            response_payload = json.loads(body)
        except json.JSONDecodeError as exc:
            raise NetworkError("OpenAI returned malformed JSON") from exc
        return _first_choice_text(response_payload)


def _first_choice_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return content.strip() if isinstance(content, str) else ""


def _default_upstream(settings: ProxySettings) -> ChatUpstream:
    return OpenAIChatUpstream(
        settings.require_openai_key(),
        model=settings.openai_model,
        max_tokens=settings.max_tokens,
        timeout_s=settings.timeout_s,
    )


def create_app(
    settings: ProxySettings | None = None,
    upstream_factory: Callable[[ProxySettings], ChatUpstream] | None = None,
) -> Flask:
    """Build the Flask app; ``upstream_factory`` is replaceable for tests."""

    settings = settings or ProxySettings.load()
    make_upstream = upstream_factory or _default_upstream

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = MAX_BODY_BYTES
    CORS(app)

    @app.errorhandler(413)
    def _too_large(_exc: Exception) -> Any:
        return jsonify(error="Request body too large."), 413

    @app.route("/api/openai-proxy", methods=["POST"])
    def openai_proxy() -> Any:
        body = flask_request.get_json(silent=True) or {}
        try:
            settings.require_openai_key()
        except UpstreamConfigError as exc:
            log_error(f"[PROXY] {exc}")
            return jsonify(error=str(exc)), 500

        image_base64 = body.get("imageBase64")
        if not isinstance(image_base64, str) or not image_base64.strip():
            return jsonify(error=NO_IMAGE), 400
        prompt = body.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            return jsonify(error=NO_PROMPT), 400

        image_base64 = image_base64.strip()
        if image_base64.startswith("data:"):
            image_url = image_base64
        else:
            image_url = f"data:{detect_mime_type(image_base64)};base64,{image_base64}"

        try:
            upstream = make_upstream(settings)
            debug_description = upstream.complete(DEBUG_DESCRIPTION_PROMPT, image_url)
            text = upstream.complete(prompt, image_url)
        except (NetworkError, UpstreamConfigError) as exc:
            log_error(f"[PROXY] OpenAI request failed: {exc}")
            return jsonify(error=UPSTREAM_FAILED), 500

        logger.info("[PROXY] openai text=%r debug=%r", text[:80], debug_description[:80])
        return jsonify(text=text, debugDescription=debug_description)

    return app


def main() -> None:
    config = ConfigController.get_instance().get_config()
    set_level(config.get("logging_level", "INFO"))
    settings = ProxySettings.load(config)
    app = create_app(settings)
    log_info(f"[PROXY] OpenAI proxy running on http://localhost:{settings.port}", style="bold green")
    app.run(host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
