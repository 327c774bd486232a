"""Tests for the voice-driven session state machine."""

from __future__ import annotations

import asyncio

from core.errors import InputUnavailable
from hardware.camera import Frame, FrameCapturer
from interaction.session import (
    CAMERA_MESSAGE,
    DESCRIBE_MESSAGE,
    RESTART_MESSAGE,
    RETRY_MESSAGE,
    START_MESSAGE,
    VoiceSession,
)
from interaction.speech_input import Listener, SpeechInput
from interaction.speech_output import SpeechOutput
from interaction.state import SessionConfig, SessionState
from vision.auto_center import PHOTO_TAKEN_MESSAGE
from vision.client import VisionQueryClient, VisionResponse


class _FakeSpeechInput(SpeechInput):
    def __init__(self, *, unavailable: bool = False) -> None:
        super().__init__()
        self.unavailable = unavailable
        self.wake: list[tuple[Listener, object, object]] = []
        self.dictation: list[tuple[Listener, object, object]] = []

    def start_wake_word_listening(self, on_transcript, on_error) -> Listener:
        if self.unavailable:
            raise InputUnavailable("Microphone unavailable: no device")
        listener = Listener("wake-word")
        self.wake.append((listener, on_transcript, on_error))
        return listener

    def listen_once(self, on_result, on_error) -> Listener:
        listener = Listener("dictation")
        self.dictation.append((listener, on_result, on_error))
        return listener

    def listeners(self) -> list[Listener]:
        return [entry[0] for entry in self.wake + self.dictation]


class _FakeSpeechOutput(SpeechOutput):
    def __init__(self) -> None:
        super().__init__(engine_factory=lambda: None)
        self.spoken: list[str] = []
        self.closed = False

    def speak(self, text: str, on_end=None):
        self.spoken.append(text)
        if on_end is not None:
            on_end()

    def cancel(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True


class _FakeCapturer(FrameCapturer):
    def __init__(self, *, fail: bool = False) -> None:
        super().__init__()
        self.fail = fail
        self.started = False
        self.stopped = False

    @property
    def is_streaming(self) -> bool:
        return self.started

    def start(self) -> None:
        if self.fail:
            raise InputUnavailable("Could not access the camera.")
        self.started = True

    def stop(self) -> None:
        self.stopped = True
        self.started = False

    def capture(self) -> Frame | None:
        return Frame(width=640, height=480, pixels=None)

    def capture_photo(self) -> Frame | None:
        return Frame(width=1280, height=720, pixels=None)


class _FakeClient(VisionQueryClient):
    def __init__(self, text: str) -> None:
        self.text = text

    async def query(self, frame: Frame, prompt: str) -> VisionResponse:
        return VisionResponse(text=self.text)


_FAST = SessionConfig(start_delay_s=0.0, retry_delay_s=0.0, restart_delay_s=0.0, detect_interval_s=60.0)


def _session(
    *,
    reply: str = "COMMAND: ready\nBBOX: [0.45,0.45,0.55,0.55]",
    speech_input: _FakeSpeechInput | None = None,
    capturer: _FakeCapturer | None = None,
) -> tuple[VoiceSession, _FakeSpeechInput, _FakeSpeechOutput, _FakeCapturer]:
    speech_input = speech_input or _FakeSpeechInput()
    speech_output = _FakeSpeechOutput()
    capturer = capturer or _FakeCapturer()
    session = VoiceSession(
        speech_input,
        speech_output,
        capturer,
        _FakeClient(reply),
        config=_FAST,
    )
    return session, speech_input, speech_output, capturer


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def _active_count(session: VoiceSession, speech_input: _FakeSpeechInput) -> int:
    listeners = sum(1 for listener in speech_input.listeners() if listener.active)
    return listeners + (1 if session.auto_center.running else 0)


def test_wake_word_only_moves_to_awaiting_description() -> None:
    async def _run() -> None:
        session, speech_input, speech_output, _ = _session()

        session.start()
        await _settle()
        assert session.state is SessionState.AWAITING_WAKE_WORD
        assert speech_output.spoken == [START_MESSAGE]
        wake_listener = speech_input.wake[0][0]
        assert session.active is wake_listener

        assert session.handle_wake_transcript("OK Vision Assist please") is True
        assert session.state is SessionState.AWAITING_DESCRIPTION
        assert not wake_listener.active
        await _settle()

        assert session.state is SessionState.AWAITING_DESCRIPTION
        assert speech_output.spoken[-1] == DESCRIBE_MESSAGE
        assert session.active is speech_input.dictation[0][0]
        assert _active_count(session, speech_input) == 1
        session.stop()

    asyncio.run(_run())


def test_transcript_without_wake_word_is_ignored() -> None:
    async def _run() -> None:
        session, speech_input, _, _ = _session()
        session.start()
        await _settle()

        assert session.handle_wake_transcript("what a nice vision") is False
        assert session.state is SessionState.AWAITING_WAKE_WORD
        assert speech_input.wake[0][0].active
        session.stop()

    asyncio.run(_run())


def test_wake_transcript_ignored_outside_wake_state() -> None:
    async def _run() -> None:
        session, speech_input, _, _ = _session()
        session.start()
        await _settle()
        session.handle_wake_transcript("vision assist")
        await _settle()

        assert session.handle_wake_transcript("vision assist") is False
        assert session.state is SessionState.AWAITING_DESCRIPTION
        assert len(speech_input.dictation) == 1
        session.stop()

    asyncio.run(_run())


def test_full_cycle_captures_and_returns_to_wake_word() -> None:
    async def _run() -> None:
        session, speech_input, speech_output, capturer = _session()
        states: list[SessionState] = []
        session.tracker.set_handler(states.append)

        session.start()
        await _settle()
        _, on_transcript, _ = speech_input.wake[0]
        on_transcript("vision assist")
        await _settle()
        _, on_result, _ = speech_input.dictation[0]
        on_result("red cup")
        await _settle()

        assert session.state is SessionState.AUTO_DETECTING
        assert "Starting detection for: red cup" in speech_output.spoken
        assert session.active is session.auto_center
        assert capturer.started
        assert _active_count(session, speech_input) == 1

        await session.auto_center.tick()
        assert session.photo is not None and session.photo.width == 1280
        assert PHOTO_TAKEN_MESSAGE in speech_output.spoken
        assert session.target_description == ""
        await _settle()

        assert session.state is SessionState.AWAITING_WAKE_WORD
        assert speech_output.spoken[-1] == RESTART_MESSAGE
        assert len(speech_input.wake) == 2
        assert _active_count(session, speech_input) == 1
        assert states == [
            SessionState.AWAITING_WAKE_WORD,
            SessionState.AWAITING_DESCRIPTION,
            SessionState.AUTO_DETECTING,
            SessionState.CAPTURED,
            SessionState.AWAITING_WAKE_WORD,
        ]
        session.stop()

    asyncio.run(_run())


def test_dictation_failure_recovers_to_wake_word() -> None:
    async def _run() -> None:
        session, speech_input, speech_output, _ = _session()
        session.start()
        await _settle()
        session.handle_wake_transcript("vision assist")
        await _settle()

        _, _, on_error = speech_input.dictation[0]
        on_error("Could not understand audio.")
        await _settle()

        assert session.state is SessionState.AWAITING_WAKE_WORD
        assert session.error == "Could not understand audio."
        assert RETRY_MESSAGE in speech_output.spoken
        assert speech_output.spoken[-1] == START_MESSAGE
        assert len(speech_input.wake) == 2
        assert _active_count(session, speech_input) == 1
        session.stop()

    asyncio.run(_run())


def test_empty_description_never_starts_detection() -> None:
    async def _run() -> None:
        session, speech_input, speech_output, capturer = _session()
        session.start()
        await _settle()
        session.handle_wake_transcript("vision assist")
        await _settle()

        session.handle_description("   ")
        await _settle()

        assert session.state is SessionState.AWAITING_WAKE_WORD
        assert not capturer.started
        assert not session.auto_center.running
        assert RETRY_MESSAGE in speech_output.spoken
        session.stop()

    asyncio.run(_run())


def test_camera_failure_recovers_to_wake_word() -> None:
    async def _run() -> None:
        session, speech_input, speech_output, _ = _session(capturer=_FakeCapturer(fail=True))
        session.start()
        await _settle()
        session.handle_wake_transcript("vision assist")
        await _settle()
        session.handle_description("blue notebook")
        await _settle()

        assert session.state is SessionState.AWAITING_WAKE_WORD
        assert session.error == "Could not access the camera."
        assert CAMERA_MESSAGE in speech_output.spoken
        assert not session.auto_center.running
        session.stop()

    asyncio.run(_run())


def test_missing_microphone_is_surfaced() -> None:
    async def _run() -> None:
        session, _, _, _ = _session(speech_input=_FakeSpeechInput(unavailable=True))
        session.start()
        await _settle()

        assert session.state is SessionState.AWAITING_WAKE_WORD
        assert session.active is None
        assert session.error is not None and "Microphone" in session.error
        session.stop()

    asyncio.run(_run())


def test_stop_releases_everything() -> None:
    async def _run() -> None:
        session, speech_input, speech_output, capturer = _session(reply="COMMAND: move left")
        runner = asyncio.create_task(session.run())
        await _settle()
        session.handle_wake_transcript("vision assist")
        await _settle()
        session.handle_description("red cup")
        await _settle()
        assert session.auto_center.running

        session.stop()
        await runner

        assert session.state is SessionState.IDLE
        assert _active_count(session, speech_input) == 0
        assert session.active is None
        assert speech_output.closed
        assert capturer.stopped

    asyncio.run(_run())
