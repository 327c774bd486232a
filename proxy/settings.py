"""Proxy settings: API keys from the env file, tuning from the YAML config."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any, Mapping

from dotenv import load_dotenv

from config import ConfigController
from core.errors import UpstreamConfigError
from core.logging import logger

MAX_BODY_BYTES = 10 * 1024 * 1024
OPENAI_KEY_MISSING = "OpenAI API key not set."
GEMINI_KEY_MISSING = "Gemini API key not set."


@dataclass(frozen=True)
class ProxySettings:
    """Keys, ports and upstream model parameters for both proxies."""

    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    port: int = 5174
    gemini_port: int = 5180
    openai_model: str = "gpt-4o"
    gemini_model: str = "gemini-2.5-flash"
    max_tokens: int = 100
    timeout_s: float = 60.0

    @classmethod
    def load(
        cls,
        config: dict[str, Any] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "ProxySettings":
        """Load ``keys.env`` (without overriding the process env) and merge config."""

        if config is None:
            config = ConfigController.get_instance().get_config()
        proxy_cfg = config.get("proxy") or {}
        if environ is None:
            env_file = Path(str(proxy_cfg.get("env_file", "./keys.env")))
            if env_file.exists():
                load_dotenv(env_file)
                logger.info("[PROXY] Loaded environment from %s", env_file)
            else:
                logger.warning("[PROXY] Env file %s not found; using process environment", env_file)
            environ = os.environ

        gemini_key = environ.get("GEMINI_API_KEY") or environ.get("VITE_GEMINI_API_KEY")
        return cls(
            openai_api_key=environ.get("OPENAI_API_KEY") or None,
            gemini_api_key=gemini_key or None,
            port=_int_env(environ, "PORT", 5174),
            gemini_port=_int_env(environ, "GEMINI_PORT", 5180),
            openai_model=str(proxy_cfg.get("openai_model", "gpt-4o")),
            gemini_model=str(proxy_cfg.get("gemini_model", "gemini-2.5-flash")),
            max_tokens=int(proxy_cfg.get("max_tokens", 100)),
            timeout_s=float(proxy_cfg.get("timeout_s", 60.0)),
        )

    def require_openai_key(self) -> str:
        if not self.openai_api_key:
            raise UpstreamConfigError(OPENAI_KEY_MISSING)
        return self.openai_api_key

    def require_gemini_key(self) -> str:
        if not self.gemini_api_key:
            raise UpstreamConfigError(GEMINI_KEY_MISSING)
        return self.gemini_api_key


def _int_env(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[PROXY] Ignoring non-integer %s=%r", name, raw)
        return default


def detect_mime_type(image_base64: str) -> str:
    """Guess the image MIME type from the base64 magic prefix."""

    if image_base64.startswith("iVBORw0KGgo"):
        return "image/png"
    if image_base64.startswith("R0lGOD"):
        return "image/gif"
    if image_base64.startswith("UklGR"):
        return "image/webp"
    return "image/jpeg"
