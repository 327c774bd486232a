"""Voice-driven session: wake word, dictated target, auto-centering, capture."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Protocol

from core.errors import InputUnavailable
from core.logging import log_error, log_info, log_warning, logger
from hardware.camera import Frame, FrameCapturer
from interaction.speech_input import Listener, SpeechInput
from interaction.speech_output import SpeechOutput
from interaction.state import SessionConfig, SessionState, SessionStateTracker
from vision.auto_center import AutoCenterLoop, FeedbackHandler, PHOTO_TAKEN_MESSAGE
from vision.client import VisionQueryClient
from vision.parser import ResponseParser


START_MESSAGE = "Say 'Vision Assist' to begin."
RESTART_MESSAGE = "Say 'Vision Assist' to start again."
DESCRIBE_MESSAGE = "How can I help? Please describe what you want to find."
STARTING_MESSAGE = "Starting detection for: {target}"
CENTER_MESSAGE = "Move the object to the center of the frame."
RETRY_MESSAGE = "Sorry, I didn't catch that. Please say 'Vision Assist' to try again."
CAMERA_MESSAGE = "Could not access the camera."


class _Stoppable(Protocol):
    def stop(self) -> None: ...


class VoiceSession:
    """Drives one camera assistant conversation on the running event loop.

    At most one input resource (wake listener, dictation listener or the
    auto-center loop) is held in ``_active`` at a time; installing a new one
    stops the previous one. Recognizer and speech callbacks arrive on worker
    threads and are re-posted to the loop before touching any state.
    """

    def __init__(
        self,
        speech_input: SpeechInput,
        speech_output: SpeechOutput,
        capturer: FrameCapturer,
        client: VisionQueryClient,
        *,
        config: SessionConfig | None = None,
        parser: ResponseParser | None = None,
        on_feedback: FeedbackHandler | None = None,
    ) -> None:
        self.config = config or SessionConfig.from_config()
        self._input = speech_input
        self._output = speech_output
        self._capturer = capturer
        self.auto_center = AutoCenterLoop(
            capturer,
            client,
            interval_s=self.config.detect_interval_s,
            parser=parser,
            speaker=speech_output,
            speak_feedback=True,
            on_feedback=on_feedback,
            on_captured=self._on_captured,
        )
        self.tracker = SessionStateTracker()
        self.target_description = ""
        self.last_transcript = ""
        self.error: str | None = None
        self.photo: Frame | None = None

        self._active: Listener | AutoCenterLoop | None = None
        self._pending: asyncio.Task[None] | None = None
        self._epoch = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stopped: asyncio.Event | None = None

    @property
    def state(self) -> SessionState:
        return self.tracker.state

    @property
    def active(self) -> _Stoppable | None:
        return self._active

    def start(self) -> None:
        """Begin listening for the wake word. Must run on the event loop."""

        self._loop = asyncio.get_running_loop()
        if self.state is not SessionState.IDLE:
            return
        self._listen_for_wake_word(START_MESSAGE, "session started")

    async def run(self) -> None:
        """Start the session and block until ``stop`` is called."""

        self._stopped = asyncio.Event()
        self.start()
        try:
            await self._stopped.wait()
        finally:
            self.close()

    def stop(self) -> None:
        """Release every input resource and return to IDLE."""

        self._cancel_pending()
        self._release_active()
        self.auto_center.stop()
        self._output.cancel()
        self._set_state(SessionState.IDLE, "stopped")
        if self._stopped is not None:
            self._stopped.set()

    def close(self) -> None:
        self.stop()
        self._output.close()
        self._capturer.stop()

    def handle_wake_transcript(self, transcript: str) -> bool:
        """Advance to dictation when ``transcript`` contains the wake word."""

        if self.state is not SessionState.AWAITING_WAKE_WORD:
            logger.debug("[SESSION] Ignoring transcript in state %s", self.state.value)
            return False
        if self.config.wake_word not in transcript.strip().lower():
            logger.debug("[SESSION] No wake word in %r", transcript)
            return False

        self.last_transcript = transcript
        self.error = None
        self._release_active()
        self._set_state(SessionState.AWAITING_DESCRIPTION, "wake word heard")
        epoch = self._epoch
        self._say(DESCRIBE_MESSAGE, on_end=lambda: self._begin_dictation(epoch))
        return True

    def handle_description(self, transcript: str) -> None:
        if self.state is not SessionState.AWAITING_DESCRIPTION:
            return
        target = transcript.strip()
        if not target:
            self.handle_description_error("Empty description.")
            return

        self._release_active()
        self.last_transcript = transcript
        self.target_description = target
        self._set_state(SessionState.AUTO_DETECTING, f"target {target!r}")
        self._say(STARTING_MESSAGE.format(target=target))
        self._schedule(self.config.start_delay_s, self._start_auto_center)

    def handle_description_error(self, message: str) -> None:
        if self.state is not SessionState.AWAITING_DESCRIPTION:
            return
        self._recover(message, RETRY_MESSAGE)

    def _listen_for_wake_word(self, message: str, reason: str) -> None:
        self._release_active()
        self._set_state(SessionState.AWAITING_WAKE_WORD, reason)
        epoch = self._epoch
        # The prompt contains the wake phrase, so the microphone opens after it.
        self._say(message, on_end=lambda: self._start_wake_listener(epoch))

    def _start_wake_listener(self, epoch: int) -> None:
        if epoch != self._epoch or self.state is not SessionState.AWAITING_WAKE_WORD:
            return
        try:
            listener = self._input.start_wake_word_listening(
                self._marshal(self.handle_wake_transcript),
                self._marshal(self._on_wake_error),
            )
        except InputUnavailable as exc:
            self.error = str(exc)
            log_error(f"[SESSION] Wake word listening unavailable: {exc}")
            return
        self._replace_active(listener)

    def _on_wake_error(self, message: str) -> None:
        self.error = message
        log_warning(f"[SESSION] {message}")

    def _begin_dictation(self, epoch: int) -> None:
        if epoch != self._epoch or self.state is not SessionState.AWAITING_DESCRIPTION:
            return
        try:
            listener = self._input.listen_once(
                self._marshal(self.handle_description),
                self._marshal(self.handle_description_error),
            )
        except InputUnavailable as exc:
            self.handle_description_error(str(exc))
            return
        self._replace_active(listener)

    def _start_auto_center(self) -> None:
        if self.state is not SessionState.AUTO_DETECTING or not self.target_description:
            return
        try:
            if not self._capturer.is_streaming:
                self._capturer.start()
        except InputUnavailable as exc:
            self._recover(str(exc), CAMERA_MESSAGE)
            return
        self.auto_center.start(self.target_description)
        self._replace_active(self.auto_center)
        self._say(CENTER_MESSAGE)

    def _on_captured(self, photo: Frame | None) -> None:
        if self.state is not SessionState.AUTO_DETECTING:
            return
        self._active = None
        self.photo = photo
        self._set_state(SessionState.CAPTURED, "photo taken")
        self._say(PHOTO_TAKEN_MESSAGE)
        self.target_description = ""
        self.auto_center.parser.reset()
        self._schedule(
            self.config.restart_delay_s,
            lambda: self._listen_for_wake_word(RESTART_MESSAGE, "ready for next photo"),
        )

    def _recover(self, message: str, spoken: str) -> None:
        self.error = message
        log_warning(f"[SESSION] {message}")
        self._release_active()
        self.target_description = ""
        self._set_state(SessionState.AWAITING_WAKE_WORD, "recovering")
        self._say(spoken)
        self._schedule(
            self.config.retry_delay_s,
            lambda: self._listen_for_wake_word(START_MESSAGE, "retry"),
        )

    def _set_state(self, state: SessionState, reason: str = "") -> None:
        self._epoch += 1
        if self.tracker.update_state(state, reason):
            log_info(f"[SESSION] {state.value}", style="bold magenta")

    def _replace_active(self, resource: Listener | AutoCenterLoop | None) -> None:
        previous, self._active = self._active, resource
        if previous is not None and previous is not resource:
            previous.stop()

    def _release_active(self) -> None:
        self._replace_active(None)

    def _say(self, text: str, on_end: Callable[[], None] | None = None) -> None:
        callback = self._marshal(on_end) if on_end is not None else None
        try:
            self._output.speak(text, on_end=callback)
        except RuntimeError as exc:
            logger.warning("[SESSION] Speech output unavailable (%s): %s", exc, text)
            if on_end is not None and self._loop is not None:
                self._loop.call_soon(on_end)

    def _marshal(self, handler: Callable[..., Any]) -> Callable[..., None]:
        loop = self._loop

        def _post(*args: Any) -> None:
            if loop is None or loop.is_closed():
                return
            loop.call_soon_threadsafe(handler, *args)

        return _post

    def _schedule(self, delay_s: float, callback: Callable[[], None]) -> None:
        self._cancel_pending()
        self._pending = asyncio.create_task(self._run_later(delay_s, callback, self._epoch))

    async def _run_later(self, delay_s: float, callback: Callable[[], None], epoch: int) -> None:
        try:
            await asyncio.sleep(delay_s)
        except asyncio.CancelledError:
            return
        if epoch == self._epoch:
            callback()

    def _cancel_pending(self) -> None:
        task = self._pending
        self._pending = None
        if task is None or task.done():
            return
        current = asyncio.current_task() if self._loop is not None and self._loop.is_running() else None
        if task is not current:
            task.cancel()
