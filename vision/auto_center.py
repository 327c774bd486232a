"""Fixed-interval auto-centering loop: capture, query, parse, act."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from core.errors import TransportError
from core.logging import log_detection, log_info, logger
from hardware.camera import Frame, FrameCapturer
from vision.client import VisionQueryClient, VisionResponse
from vision.detections import DetectionKind, DetectionResult
from vision.parser import ResponseParser
from vision.prompts import build_center_prompt


AUTO_DETECTING_MESSAGE = "Auto-detecting... Move to the center."
PHOTO_TAKEN_MESSAGE = "Photo taken! The object is well framed."
NOT_CENTERED_MESSAGE = "Object detected, but not centered. Move it to the center of the frame."
DESCRIPTION_LABEL = "What the model sees"

FeedbackHandler = Callable[[str, "DetectionResult | None"], Awaitable[None] | None]
CaptureHandler = Callable[["Frame | None"], Awaitable[None] | None]


class Speaker(Protocol):
    def speak(self, text: str, on_end: Callable[[], None] | None = None) -> Any: ...


class LoopState(str, Enum):
    """Lifecycle of one auto-center loop instance."""

    IDLE = "idle"
    RUNNING = "running"
    CAPTURED = "captured"
    STOPPED = "stopped"


class AutoCenterLoop:
    """Polls the vision model until the target is centered, then takes the photo.

    All methods run on one asyncio event loop. Each ``start`` opens a new
    generation; results that resolve after ``stop`` (or after a newer
    ``start``) belong to an old generation and are dropped. A tick that fires
    while the previous query is still in flight is skipped.
    """

    def __init__(
        self,
        capturer: FrameCapturer,
        client: VisionQueryClient,
        *,
        interval_s: float = 3.0,
        parser: ResponseParser | None = None,
        speaker: Speaker | None = None,
        speak_feedback: bool = False,
        on_feedback: FeedbackHandler | None = None,
        on_captured: CaptureHandler | None = None,
    ) -> None:
        self._capturer = capturer
        self._client = client
        self.interval_s = max(0.0, float(interval_s))
        self.parser = parser or ResponseParser()
        self._speaker = speaker
        self.speak_feedback = speak_feedback
        self._on_feedback = on_feedback
        self._on_captured = on_captured

        self.state = LoopState.IDLE
        self.target_description = ""
        self.feedback = ""
        self.last_result: DetectionResult | None = None
        self.debug_description: str | None = None
        self.photo: Frame | None = None
        self.tick_count = 0

        self._generation = 0
        self._timer_task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[DetectionResult | None] | None = None

    @property
    def running(self) -> bool:
        return self.state is LoopState.RUNNING

    def start(self, target_description: str) -> None:
        """Begin ticking every ``interval_s`` seconds for ``target_description``."""

        target = target_description.strip()
        if not target:
            raise ValueError("auto-center needs a non-empty target description")
        if self.running:
            self.stop()
        if target.lower() != self.target_description.lower():
            self.parser.reset()

        self.target_description = target
        self.photo = None
        self.tick_count = 0
        self._generation += 1
        self.state = LoopState.RUNNING
        log_info(f"[VISION] Auto-center started for {target!r}", style="bold cyan")
        self._emit(AUTO_DETECTING_MESSAGE, None)
        self._timer_task = asyncio.create_task(self._run_timer(self._generation))

    def stop(self) -> None:
        """Cancel the timer and any in-flight query; late results are dropped."""

        self._generation += 1
        self._cancel_tasks()
        if self.state is LoopState.RUNNING:
            self.state = LoopState.STOPPED
            self.feedback = ""
            logger.info("[VISION] Auto-center stopped after %s ticks", self.tick_count)

    async def detect_once(self, target_description: str = "") -> DetectionResult | None:
        """Run one manual query without the timer and without capturing."""

        self.target_description = target_description.strip()
        frame = self._capturer.capture()
        if frame is None:
            self._emit("Camera is not ready yet.", None)
            return None
        self._emit("Detecting...", None)
        response = await self._query(frame, self._generation)
        if response is None:
            return None
        result = self.parser.parse(response.text, self.target_description)
        log_detection(result)
        self._show(result, response)
        return result

    async def tick(self, generation: int | None = None) -> DetectionResult | None:
        """Run one capture -> query -> parse -> act cycle."""

        if generation is None:
            generation = self._generation
        self.tick_count += 1
        frame = self._capturer.capture()
        if frame is None:
            logger.info("[CAMERA] No usable frame; skipping tick %s", self.tick_count)
            return None

        response = await self._query(frame, generation)
        if response is None:
            return None
        if generation != self._generation or not self.running:
            logger.info("[VISION] Dropping late result from a cancelled run")
            return None

        result = self.parser.parse(response.text, self.target_description)
        log_detection(result)
        if result.is_ready:
            self._finish(frame, result)
            return result

        message = self._show(result, response)
        if self.speak_feedback and self._speaker is not None and message:
            self._speaker.speak(message)
        return result

    async def _run_timer(self, generation: int) -> None:
        try:
            while generation == self._generation:
                await asyncio.sleep(self.interval_s)
                if generation != self._generation:
                    return
                if self._inflight is not None and not self._inflight.done():
                    logger.info("[VISION] Tick skipped; previous query still in flight")
                    continue
                self._inflight = asyncio.create_task(self.tick(generation))
        except asyncio.CancelledError:
            return

    async def _query(self, frame: Frame, generation: int) -> VisionResponse | None:
        prompt = build_center_prompt(self.target_description)
        try:
            return await self._client.query(frame, prompt)
        except TransportError as exc:
            if generation == self._generation:
                logger.warning("[VISION] Query failed (retrying next tick): %s", exc)
                self._emit(f"Detection failed: {exc}", None)
            return None

    def _show(self, result: DetectionResult, response: VisionResponse) -> str:
        self.last_result = result
        self.debug_description = response.debug_description
        if response.debug_description:
            log_info(f"[VISION] {DESCRIPTION_LABEL}: {response.debug_description}", style="dim")
        message = result.feedback_text()
        if (
            result.kind is DetectionKind.NOT_VISIBLE
            and response.debug_description
            and self.target_description
            and self.target_description.lower() in response.debug_description.lower()
        ):
            message = NOT_CENTERED_MESSAGE
        self._emit(message, result)
        return message

    def _finish(self, frame: Frame, result: DetectionResult) -> None:
        self.last_result = result
        self.debug_description = None
        self._generation += 1
        self._cancel_tasks()
        self.state = LoopState.CAPTURED
        photo = self._capturer.capture_photo()
        self.photo = photo if photo is not None else frame
        self.parser.reset()
        log_info(
            f"[VISION] Photo captured {self.photo.width}x{self.photo.height} after {self.tick_count} ticks",
            style="bold green",
        )
        self._emit(PHOTO_TAKEN_MESSAGE, result)
        if self._on_captured is not None:
            self._dispatch(self._on_captured, self.photo)

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task() if _loop_running() else None
        for task in (self._timer_task, self._inflight):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._timer_task = None
        if self._inflight is not current:
            self._inflight = None

    def _emit(self, message: str, result: DetectionResult | None) -> None:
        self.feedback = message
        if self._on_feedback is not None:
            self._dispatch(self._on_feedback, message, result)

    def _dispatch(self, handler: Callable[..., Any], *args: Any) -> None:
        try:
            outcome = handler(*args)
            if asyncio.iscoroutine(outcome):
                asyncio.create_task(outcome)
        except Exception:
            logger.exception("[VISION] Feedback handler failed")


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True
