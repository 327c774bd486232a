"""Serialized speech synthesis with a single current-utterance slot."""

from __future__ import annotations

from dataclasses import dataclass, field
import importlib
import importlib.util
import threading
from typing import Any, Callable

from config import ConfigController
from core.logging import logger


def _default_engine_factory() -> Any:
    if importlib.util.find_spec("pyttsx3") is None:
        raise RuntimeError("pyttsx3 is required for SpeechOutput")
    pyttsx3 = importlib.import_module("pyttsx3")
    return pyttsx3.init()


@dataclass
class Utterance:
    """One queued or playing phrase.

    ``on_end`` runs on the speech worker thread, and only when the utterance
    finished without being cancelled.
    """

    text: str
    on_end: Callable[[], None] | None = None
    cancelled: threading.Event = field(default_factory=threading.Event)
    done: threading.Event = field(default_factory=threading.Event)

    def cancel(self) -> None:
        self.cancelled.set()


class SpeechOutput:
    """Speak text on a background worker that owns the TTS engine.

    ``speak`` cancels whatever is playing or waiting and replaces it, so at
    most one utterance is ever current.
    """

    def __init__(
        self,
        rate: int = 180,
        engine_factory: Callable[[], Any] | None = None,
    ) -> None:
        self._rate = rate
        self._engine_factory = engine_factory or _default_engine_factory
        self._cond = threading.Condition()
        self._pending: Utterance | None = None
        self._current: Utterance | None = None
        self._stop = False
        self._engine: Any = None
        self._ready = threading.Event()
        self._init_error: Exception | None = None
        self._thread: threading.Thread | None = None

    @classmethod
    def from_config(cls, config: dict[str, Any] | None = None) -> "SpeechOutput":
        if config is None:
            config = ConfigController.get_instance().get_config()
        speech_cfg = config.get("speech") or {}
        return cls(rate=int(speech_cfg.get("rate", 180)))

    @property
    def speaking(self) -> bool:
        with self._cond:
            return self._current is not None or self._pending is not None

    def start(self) -> None:
        """Start the worker and wait for the engine to initialize.

        An engine that failed to initialize is not retried.
        """

        if self._init_error is not None:
            raise RuntimeError(f"Speech output unavailable: {self._init_error}") from self._init_error
        with self._cond:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop = False
            self._ready.clear()
            self._thread = threading.Thread(target=self._worker, name="speech-output", daemon=True)
            self._thread.start()
        self._ready.wait(timeout=5.0)
        if self._init_error is not None:
            raise RuntimeError(f"Speech output unavailable: {self._init_error}") from self._init_error

    def speak(self, text: str, on_end: Callable[[], None] | None = None) -> Utterance:
        """Cancel the current utterance and speak ``text`` instead."""

        if self._thread is None or not self._thread.is_alive():
            self.start()
        utterance = Utterance(text=text, on_end=on_end)
        with self._cond:
            self._cancel_locked()
            self._pending = utterance
            self._cond.notify_all()
        logger.info("[SPEECH] Say: %s", text)
        return utterance

    def cancel(self) -> None:
        """Cancel the current and pending utterances."""

        with self._cond:
            self._cancel_locked()
            self._cond.notify_all()

    def close(self) -> None:
        """Stop the worker thread and release the engine."""

        with self._cond:
            self._stop = True
            self._cancel_locked()
            self._cond.notify_all()
            thread = self._thread
        if thread is not None:
            thread.join(timeout=2.0)
        self._thread = None

    def _cancel_locked(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending.done.set()
            self._pending = None
        if self._current is not None:
            self._current.cancel()
            if self._engine is not None:
                try:
                    self._engine.stop()
                except Exception:
                    logger.exception("[SPEECH] Engine stop failed")

    def _on_word(self, name: str | None = None, location: int = 0, length: int = 0) -> None:
        current = self._current
        if current is not None and current.cancelled.is_set():
            self._engine.stop()

    def _worker(self) -> None:
        try:
            self._engine = self._engine_factory()
            self._engine.setProperty("rate", self._rate)
            self._engine.connect("started-word", self._on_word)
        except Exception as exc:  # noqa: BLE001 - reported back to start()
            logger.error("[SPEECH] Failed to initialize TTS engine: %s", exc)
            self._init_error = exc
            self._ready.set()
            return
        self._ready.set()

        while True:
            with self._cond:
                while self._pending is None and not self._stop:
                    self._cond.wait()
                if self._stop:
                    break
                utterance = self._pending
                self._pending = None
                self._current = utterance

            try:
                if not utterance.cancelled.is_set():
                    self._engine.say(utterance.text)
                    self._engine.runAndWait()
            except Exception:
                logger.exception("[SPEECH] Utterance failed: %s", utterance.text)
                utterance.cancel()
            finally:
                with self._cond:
                    self._current = None

            if utterance.on_end is not None and not utterance.cancelled.is_set():
                try:
                    utterance.on_end()
                except Exception:
                    logger.exception("[SPEECH] on_end callback failed")
            utterance.done.set()

        try:
            self._engine.stop()
        except Exception:
            logger.exception("[SPEECH] Engine shutdown failed")
