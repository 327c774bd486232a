"""``POST /api/gemini-vision``: forwards a frame to Gemini for a scene description."""

from __future__ import annotations

import base64
import binascii
from typing import Any, Callable, Protocol

from flask import Flask, jsonify, request as flask_request
from flask_cors import CORS
from google import genai
from google.genai import types

from config import ConfigController
from core.errors import UpstreamConfigError
from core.logging import log_error, log_info, logger, set_level
from proxy.settings import MAX_BODY_BYTES, ProxySettings, detect_mime_type
from vision.prompts import OBJECT_LIST_PROMPT

UPSTREAM_FAILED = "Failed to analyze image with Gemini Vision."
NO_IMAGE = "No image provided."
BAD_IMAGE = "Image is not valid base64."


class VisionUpstream(Protocol):
    def describe(self, prompt: str, image_bytes: bytes, mime_type: str) -> str: ...


class GeminiUpstream:
    """Wraps ``genai.Client`` for one image-plus-prompt generation."""

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash") -> None:
        self._client = genai.Client(api_key=api_key)
        self._model = model

    def describe(self, prompt: str, image_bytes: bytes, mime_type: str) -> str:
        response = self._client.models.generate_content(
            model=self._model,
            contents=[
                prompt,
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
            ],
        )
        return (response.text or "").strip()


def _default_upstream(settings: ProxySettings) -> VisionUpstream:
    return GeminiUpstream(settings.require_gemini_key(), settings.gemini_model)


def _decode_image(image_base64: str) -> tuple[bytes, str]:
    if image_base64.startswith("data:") and "," in image_base64:
        header, image_base64 = image_base64.split(",", 1)
        mime_type = header[len("data:"):].split(";", 1)[0] or "image/jpeg"
    else:
        mime_type = detect_mime_type(image_base64)
    return base64.b64decode(image_base64, validate=True), mime_type


def create_app(
    settings: ProxySettings | None = None,
    upstream_factory: Callable[[ProxySettings], VisionUpstream] | None = None,
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

    @app.route("/api/gemini-vision", methods=["POST"])
    def gemini_vision() -> Any:
        body = flask_request.get_json(silent=True) or {}
        image_base64 = body.get("imageBase64")
        if not isinstance(image_base64, str) or not image_base64.strip():
            return jsonify(error=NO_IMAGE), 400
        try:
            image_bytes, mime_type = _decode_image(image_base64.strip())
        except (binascii.Error, ValueError):
            return jsonify(error=BAD_IMAGE), 400

        prompt = body.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            prompt = OBJECT_LIST_PROMPT

        try:
            upstream = make_upstream(settings)
            text = upstream.describe(prompt, image_bytes, mime_type)
        except UpstreamConfigError as exc:
            log_error(f"[PROXY] {exc}")
            return jsonify(error=str(exc)), 500
        except Exception as exc:  # noqa: BLE001 - SDK raises assorted error types
            log_error(f"[PROXY] Gemini Vision API error: {exc}")
            return jsonify(error=UPSTREAM_FAILED), 500

        logger.info("[PROXY] gemini text=%r", text[:80])
        return jsonify(text=text)

    return app


def main() -> None:
    config = ConfigController.get_instance().get_config()
    set_level(config.get("logging_level", "INFO"))
    settings = ProxySettings.load(config)
    app = create_app(settings)
    log_info(
        f"[PROXY] Gemini Vision proxy running on http://localhost:{settings.gemini_port}",
        style="bold green",
    )
    app.run(host="0.0.0.0", port=settings.gemini_port)


if __name__ == "__main__":
    main()
