"""Voice session states and the timing knobs that drive transitions."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
import time
from typing import Any, Awaitable, Callable

from config import ConfigController
from config.controller import DEFAULT_WAKE_WORD
from core.logging import logger

StateHandler = Callable[["SessionState"], Awaitable[None] | None]


class SessionState(str, Enum):
    """Supported states of the voice-driven session."""

    IDLE = "idle"
    AWAITING_WAKE_WORD = "awaiting_wake_word"
    AWAITING_DESCRIPTION = "awaiting_description"
    AUTO_DETECTING = "auto_detecting"
    CAPTURED = "captured"


@dataclass(frozen=True)
class SessionConfig:
    """Wake word and delays between session phases."""

    wake_word: str = DEFAULT_WAKE_WORD
    start_delay_s: float = 1.0
    retry_delay_s: float = 2.0
    restart_delay_s: float = 3.0
    detect_interval_s: float = 5.0

    @classmethod
    def from_config(cls, config: dict[str, Any] | None = None) -> "SessionConfig":
        if config is None:
            config = ConfigController.get_instance().get_config()
        session_cfg = config.get("session") or {}
        auto_cfg = config.get("auto_center") or {}
        wake_word = str(session_cfg.get("wake_word") or DEFAULT_WAKE_WORD).strip().lower()
        return cls(
            wake_word=wake_word or DEFAULT_WAKE_WORD,
            start_delay_s=max(0.0, float(session_cfg.get("start_delay_s", 1.0))),
            retry_delay_s=max(0.0, float(session_cfg.get("retry_delay_s", 2.0))),
            restart_delay_s=max(0.0, float(session_cfg.get("restart_delay_s", 3.0))),
            detect_interval_s=max(0.0, float(auto_cfg.get("voice_interval_s", 5.0))),
        )


class SessionStateTracker:
    """Track session transitions and notify an optional observer."""

    def __init__(self) -> None:
        self.state = SessionState.IDLE
        self._last_transition = time.monotonic()
        self._handler: StateHandler | None = None

    def set_handler(self, handler: StateHandler | None) -> None:
        self._handler = handler

    def update_state(self, new_state: SessionState, reason: str = "") -> bool:
        if new_state == self.state:
            return False

        last_state = self.state
        self.state = new_state
        self._last_transition = time.monotonic()
        logger.info(
            "Session state transition: %s -> %s%s",
            last_state.value,
            new_state.value,
            f" ({reason})" if reason else "",
        )
        if self._handler is not None:
            try:
                result = self._handler(new_state)
                if asyncio.iscoroutine(result):
                    asyncio.create_task(result)
            except Exception:
                logger.exception("Failed to dispatch state handler for %s", new_state.value)
        return True
