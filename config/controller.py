"""Configuration controller for YAML-based settings."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


DEFAULT_WAKE_WORD = "vision assist"


@dataclass(frozen=True)
class ConfigPaths:
    """Filesystem paths for configuration files."""

    config_dir: Path
    config_file: Path
    override_file: Path


class ConfigController:
    """Singleton controller for loading and updating configuration."""

    _instance: "ConfigController | None" = None

    def __init__(self, config_file: str = "default.yaml") -> None:
        if ConfigController._instance is not None:
            raise RuntimeError("You cannot create another ConfigController class")

        config_dir = Path("config")
        self.paths = ConfigPaths(
            config_dir=config_dir,
            config_file=config_dir / config_file,
            override_file=config_dir / "override.yaml",
        )
        self.config: dict[str, Any] = {}
        self.load_config()

    @classmethod
    def get_instance(cls) -> "ConfigController":
        """Return the singleton instance of the controller."""

        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def load_config(self) -> None:
        """Load configuration from default and override YAML files."""

        config: dict[str, Any] = {}
        if self.paths.config_file.exists():
            with self.paths.config_file.open("r", encoding="utf-8") as file:
                config = yaml.safe_load(file) or {}

        if self.paths.override_file.exists():
            with self.paths.override_file.open("r", encoding="utf-8") as file:
                override_config = yaml.safe_load(file) or {}
            if override_config:
                config = self._deep_merge(config, override_config)

        self.config = self._normalize_config(config)

    def save_config(self, config: dict[str, Any]) -> None:
        """Persist configuration to override.yaml, archiving previous overrides."""

        self.paths.config_dir.mkdir(parents=True, exist_ok=True)
        if self.paths.override_file.exists():
            archive_index = 1
            archive_file = self._archive_path(archive_index)
            while archive_file.exists():
                archive_index += 1
                archive_file = self._archive_path(archive_index)
            self.paths.override_file.rename(archive_file)

        with self.paths.override_file.open("w", encoding="utf-8") as file:
            yaml.safe_dump(config, file)

    def get_config(self) -> dict[str, Any]:
        """Return the currently loaded configuration."""

        return dict(self.config)

    def _archive_path(self, index: int) -> Path:
        """Return the archive path for a given override index."""

        filename = f"override_{index:04d}.yaml"
        return self.paths.config_dir / filename

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge dictionaries, overriding base values with override values."""

        merged = dict(base)
        for key, value in override.items():
            if (
                key in merged
                and isinstance(merged[key], dict)
                and isinstance(value, dict)
            ):
                merged[key] = self._deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _normalize_config(self, config: dict[str, Any]) -> dict[str, Any]:
        """Fill in defaults for every section the runtime reads."""

        normalized = dict(config)
        normalized["logging_level"] = str(normalized.get("logging_level", "INFO"))
        normalized["file_logging_enabled"] = bool(normalized.get("file_logging_enabled", False))
        normalized["log_file"] = str(normalized.get("log_file", "./var/log/vision_assist.log"))

        camera_cfg = dict(normalized.get("camera") or {})
        camera_cfg["device_index"] = int(camera_cfg.get("device_index", 0))
        camera_cfg["width"] = int(camera_cfg.get("width", 640))
        camera_cfg["height"] = int(camera_cfg.get("height", 480))
        camera_cfg["photo_width"] = int(camera_cfg.get("photo_width", camera_cfg["width"]))
        camera_cfg["photo_height"] = int(camera_cfg.get("photo_height", camera_cfg["height"]))
        camera_cfg["encoding"] = str(camera_cfg.get("encoding", "JPEG")).upper()
        camera_cfg["jpeg_quality"] = int(camera_cfg.get("jpeg_quality", 85))
        camera_cfg["mirror"] = bool(camera_cfg.get("mirror", False))
        normalized["camera"] = camera_cfg

        vision_cfg = dict(normalized.get("vision") or {})
        vision_cfg["provider"] = str(vision_cfg.get("provider", "openai")).strip().lower()
        vision_cfg["base_url"] = str(vision_cfg.get("base_url", "http://localhost:5174"))
        vision_cfg["gemini_base_url"] = str(
            vision_cfg.get("gemini_base_url", "http://localhost:5180")
        )
        vision_cfg["timeout_s"] = float(vision_cfg.get("timeout_s", 30.0))
        normalized["vision"] = vision_cfg

        auto_cfg = dict(normalized.get("auto_center") or {})
        auto_cfg["interval_s"] = float(auto_cfg.get("interval_s", 3.0))
        auto_cfg["voice_interval_s"] = float(auto_cfg.get("voice_interval_s", 5.0))
        auto_cfg["history_size"] = max(2, int(auto_cfg.get("history_size", 3)))
        auto_cfg["speak_feedback"] = bool(auto_cfg.get("speak_feedback", True))
        normalized["auto_center"] = auto_cfg

        speech_cfg = dict(normalized.get("speech") or {})
        speech_cfg["language"] = str(speech_cfg.get("language", "en-US"))
        speech_cfg["rate"] = int(speech_cfg.get("rate", 180))
        speech_cfg["ambient_adjust_s"] = float(speech_cfg.get("ambient_adjust_s", 1.0))
        speech_cfg["phrase_time_limit_s"] = float(speech_cfg.get("phrase_time_limit_s", 5.0))
        speech_cfg["dictation_timeout_s"] = float(speech_cfg.get("dictation_timeout_s", 8.0))
        speech_cfg["dictation_phrase_limit_s"] = float(
            speech_cfg.get("dictation_phrase_limit_s", 10.0)
        )
        normalized["speech"] = speech_cfg

        session_cfg = dict(normalized.get("session") or {})
        session_cfg["wake_word"] = str(session_cfg.get("wake_word", DEFAULT_WAKE_WORD)).strip().lower()
        session_cfg["start_delay_s"] = float(session_cfg.get("start_delay_s", 1.0))
        session_cfg["retry_delay_s"] = float(session_cfg.get("retry_delay_s", 2.0))
        session_cfg["restart_delay_s"] = float(session_cfg.get("restart_delay_s", 3.0))
        normalized["session"] = session_cfg

        proxy_cfg = dict(normalized.get("proxy") or {})
        proxy_cfg["env_file"] = str(proxy_cfg.get("env_file", "./keys.env"))
        proxy_cfg["openai_model"] = str(proxy_cfg.get("openai_model", "gpt-4o"))
        proxy_cfg["gemini_model"] = str(proxy_cfg.get("gemini_model", "gemini-2.5-flash"))
        proxy_cfg["max_tokens"] = int(proxy_cfg.get("max_tokens", 100))
        proxy_cfg["timeout_s"] = float(proxy_cfg.get("timeout_s", 60.0))
        normalized["proxy"] = proxy_cfg
        return normalized
