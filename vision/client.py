"""HTTP clients for the vision proxy endpoints."""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
import json
import os
from typing import Any
from urllib import error, request

from core.errors import EmptyResponse, NetworkError
from core.logging import logger
from hardware.camera import Frame


PROXY_URL_ENV = "VISION_ASSIST_PROXY_URL"


@dataclass(frozen=True)
class VisionResponse:
    """Reply text plus the optional auxiliary scene description."""

    text: str
    debug_description: str | None = None


class VisionQueryClient(ABC):
    """Sends one frame and prompt, returns unstructured reply text."""

    @abstractmethod
    async def query(self, frame: Frame, prompt: str) -> VisionResponse:
        """Query the vision model once; no retry.

        Raises:
            NetworkError: transport failure, non-2xx status or malformed JSON.
            EmptyResponse: the body carries no usable ``text`` field.
        """


class _ProxyVisionClient(VisionQueryClient):
    endpoint_path = ""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 30.0,
        image_format: str = "JPEG",
        jpeg_quality: int = 85,
    ) -> None:
        self._url = base_url.rstrip("/") + self.endpoint_path
        self._timeout_s = max(1.0, float(timeout_s))
        self._image_format = image_format
        self._jpeg_quality = jpeg_quality

    @property
    def url(self) -> str:
        return self._url

    async def query(self, frame: Frame, prompt: str) -> VisionResponse:
        image_base64 = frame.to_base64(self._image_format, self._jpeg_quality)
        payload = self._build_payload(image_base64, prompt)
        logger.debug("[VISION] POST %s (%s bytes base64)", self._url, len(image_base64))
        body = await asyncio.to_thread(self._post_json, payload)
        return self._parse_body(body)

    def _build_payload(self, image_base64: str, prompt: str) -> dict[str, Any]:
        return {"prompt": prompt, "imageBase64": image_base64}

    def _post_json(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = json.dumps(payload).encode("utf-8")
        http_request = request.Request(
            self._url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with request.urlopen(http_request, timeout=self._timeout_s) as response:
                raw = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raise NetworkError(
                f"{self._url} returned HTTP {exc.code}: {_error_detail(exc)}",
                status=exc.code,
            ) from exc
        except (error.URLError, OSError) as exc:
            raise NetworkError(f"{self._url} unreachable: {exc}") from exc

        try:
            body = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise NetworkError(f"{self._url} returned malformed JSON") from exc
        if not isinstance(body, dict):
            raise NetworkError(f"{self._url} returned a non-object JSON body")
        return body

    def _parse_body(self, body: dict[str, Any]) -> VisionResponse:
        text = body.get("text")
        if not isinstance(text, str) or not text.strip():
            raise EmptyResponse(f"{self._url} returned no text")
        debug = body.get("debugDescription")
        if not isinstance(debug, str) or not debug.strip():
            debug = None
        return VisionResponse(text=text.strip(), debug_description=debug)


class OpenAIProxyClient(_ProxyVisionClient):
    """Client for ``POST /api/openai-proxy``; replies carry a debug description."""

    endpoint_path = "/api/openai-proxy"


class GeminiProxyClient(_ProxyVisionClient):
    """Client for ``POST /api/gemini-vision``."""

    endpoint_path = "/api/gemini-vision"

    def _build_payload(self, image_base64: str, prompt: str) -> dict[str, Any]:
        payload: dict[str, Any] = {"imageBase64": image_base64}
        if prompt:
            payload["prompt"] = prompt
        return payload


def _error_detail(exc: error.HTTPError) -> str:
    try:
        body = json.loads(exc.read().decode("utf-8"))
    except (OSError, ValueError):
        return exc.reason if isinstance(exc.reason, str) else "error"
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return "error"


def build_vision_client(config: dict[str, Any], provider: str | None = None) -> VisionQueryClient:
    """Construct the client selected by ``vision.provider`` (or ``provider``)."""

    vision_cfg = config.get("vision") or {}
    camera_cfg = config.get("camera") or {}
    provider = (provider or str(vision_cfg.get("provider", "openai"))).strip().lower()
    timeout_s = float(vision_cfg.get("timeout_s", 30.0))
    image_format = str(camera_cfg.get("encoding", "JPEG"))
    jpeg_quality = int(camera_cfg.get("jpeg_quality", 85))
    override = os.getenv(PROXY_URL_ENV, "").strip()

    if provider == "gemini":
        base_url = override or str(vision_cfg.get("gemini_base_url", "http://localhost:5180"))
        client_cls: type[_ProxyVisionClient] = GeminiProxyClient
    elif provider == "openai":
        base_url = override or str(vision_cfg.get("base_url", "http://localhost:5174"))
        client_cls = OpenAIProxyClient
    else:
        raise ValueError(f"Unknown vision provider: {provider!r}")

    client = client_cls(
        base_url,
        timeout_s=timeout_s,
        image_format=image_format,
        jpeg_quality=jpeg_quality,
    )
    logger.info("[VISION] Using %s proxy at %s", provider, client.url)
    return client
