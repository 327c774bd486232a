"""Microphone transcription: continuous wake-word listening and one-shot dictation."""

from __future__ import annotations

import importlib
import importlib.util
import threading
from typing import Any, Callable

from config import ConfigController
from core.errors import InputUnavailable
from core.logging import logger

TranscriptHandler = Callable[[str], None]
ErrorHandler = Callable[[str], None]


def _require_speech_recognition() -> Any:
    if importlib.util.find_spec("speech_recognition") is None:
        raise InputUnavailable("SpeechRecognition is required for SpeechInput")
    return importlib.import_module("speech_recognition")


class Listener:
    """Handle for one active recognizer; ``stop`` releases it.

    Callbacks from a stopped listener are suppressed.
    """

    def __init__(self, kind: str, stopper: Callable[[], None] | None = None) -> None:
        self.kind = kind
        self._stopper = stopper
        self._stopped = threading.Event()

    @property
    def active(self) -> bool:
        return not self._stopped.is_set()

    def bind(self, stopper: Callable[[], None]) -> None:
        self._stopper = stopper

    def stop(self) -> None:
        if self._stopped.is_set():
            return
        self._stopped.set()
        if self._stopper is not None:
            try:
                self._stopper()
            except Exception:
                logger.exception("[SPEECH] Failed to stop %s listener", self.kind)
        logger.info("[SPEECH] %s listener stopped", self.kind)

    def __repr__(self) -> str:
        return f"Listener(kind={self.kind!r}, active={self.active})"


class SpeechInput:
    """Wraps ``speech_recognition`` recognizer and microphone handles.

    Handlers are invoked on recognizer threads; callers marshal them onto
    their own event loop.
    """

    def __init__(
        self,
        language: str = "en-US",
        ambient_adjust_s: float = 1.0,
        phrase_time_limit_s: float = 5.0,
        dictation_timeout_s: float = 8.0,
        dictation_phrase_limit_s: float = 10.0,
    ) -> None:
        self.language = language
        self.ambient_adjust_s = ambient_adjust_s
        self.phrase_time_limit_s = phrase_time_limit_s
        self.dictation_timeout_s = dictation_timeout_s
        self.dictation_phrase_limit_s = dictation_phrase_limit_s
        self._sr: Any = None
        self._recognizer: Any = None
        self._microphone: Any = None
        self._calibrated = False
        self._wake_stopper: Callable[..., None] | None = None

    @classmethod
    def from_config(cls, config: dict[str, Any] | None = None) -> "SpeechInput":
        if config is None:
            config = ConfigController.get_instance().get_config()
        speech_cfg = config.get("speech") or {}
        return cls(
            language=str(speech_cfg.get("language", "en-US")),
            ambient_adjust_s=float(speech_cfg.get("ambient_adjust_s", 1.0)),
            phrase_time_limit_s=float(speech_cfg.get("phrase_time_limit_s", 5.0)),
            dictation_timeout_s=float(speech_cfg.get("dictation_timeout_s", 8.0)),
            dictation_phrase_limit_s=float(speech_cfg.get("dictation_phrase_limit_s", 10.0)),
        )

    def open(self) -> None:
        """Create the recognizer and microphone; raises ``InputUnavailable``."""

        if self._microphone is not None:
            return
        self._sr = _require_speech_recognition()
        self._recognizer = self._sr.Recognizer()
        try:
            self._microphone = self._sr.Microphone()
        except (AttributeError, OSError) as exc:
            raise InputUnavailable(f"Microphone unavailable: {exc}") from exc
        logger.info("[SPEECH] Microphone opened")

    def start_wake_word_listening(
        self,
        on_transcript: TranscriptHandler,
        on_error: ErrorHandler,
    ) -> Listener:
        """Transcribe every phrase continuously until the listener is stopped."""

        self.open()
        self._calibrate()
        listener = Listener("wake-word")

        def _callback(recognizer: Any, audio: Any) -> None:
            if not listener.active:
                return
            try:
                text = recognizer.recognize_google(audio, language=self.language)
            except self._sr.UnknownValueError:
                return
            except self._sr.RequestError as exc:
                if listener.active:
                    on_error(f"Wake word recognition error: {exc}")
                return
            if listener.active and text:
                on_transcript(text)

        stopper = self._recognizer.listen_in_background(
            self._microphone,
            _callback,
            phrase_time_limit=self.phrase_time_limit_s,
        )
        self._wake_stopper = stopper
        listener.bind(lambda: stopper(wait_for_stop=False))
        logger.info("[SPEECH] wake-word listener started")
        return listener

    def listen_once(
        self,
        on_result: TranscriptHandler,
        on_error: ErrorHandler,
    ) -> Listener:
        """Capture one utterance on a worker thread and transcribe it."""

        self.open()
        listener = Listener("dictation")

        def _run() -> None:
            try:
                self._release_wake_microphone()
                with self._microphone as source:
                    audio = self._recognizer.listen(
                        source,
                        timeout=self.dictation_timeout_s,
                        phrase_time_limit=self.dictation_phrase_limit_s,
                    )
                text = self._recognizer.recognize_google(audio, language=self.language)
            except self._sr.WaitTimeoutError:
                error_message = "No speech detected before timeout."
            except self._sr.UnknownValueError:
                error_message = "Could not understand audio."
            except self._sr.RequestError as exc:
                error_message = f"Speech service error: {exc}"
            except OSError as exc:
                error_message = f"Microphone error or permission denied: {exc}"
            except Exception as exc:
                logger.exception("[SPEECH] Dictation failed")
                error_message = f"Dictation failed: {exc}"
            else:
                if listener.active:
                    listener.stop()
                    on_result(text)
                return
            if listener.active:
                listener.stop()
                on_error(error_message)

        thread = threading.Thread(target=_run, name="speech-dictation", daemon=True)
        thread.start()
        logger.info("[SPEECH] dictation listener started")
        return listener

    def _release_wake_microphone(self) -> None:
        # The background recognizer holds the microphone until its thread exits.
        stopper, self._wake_stopper = self._wake_stopper, None
        if stopper is not None:
            stopper(wait_for_stop=True)

    def _calibrate(self) -> None:
        if self._calibrated or self.ambient_adjust_s <= 0:
            return
        with self._microphone as source:
            self._recognizer.adjust_for_ambient_noise(source, duration=self.ambient_adjust_s)
        self._calibrated = True
        logger.info("[SPEECH] Energy threshold set to %.2f", self._recognizer.energy_threshold)
