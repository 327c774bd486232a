"""Diagnostics routines for speech input and output."""

from __future__ import annotations

import importlib
import importlib.util

from core.logging import logger
from diagnostics.models import DiagnosticResult, DiagnosticStatus

SPEECH_MODULES = ("speech_recognition", "pyaudio", "pyttsx3")


def probe(
    available_modules: set[str] | None = None,
    list_devices: bool = True,
) -> DiagnosticResult:
    """Check that the recognizer, microphone backend and TTS engine import.

    Args:
        available_modules: Optional override set for offline testing.
        list_devices: Log PyAudio input devices when the backend is present.

    Returns:
        Diagnostic result indicating speech readiness.
    """

    name = "speech"

    missing: list[str] = []
    for module_name in SPEECH_MODULES:
        if available_modules is not None:
            is_available = module_name in available_modules
        else:
            is_available = importlib.util.find_spec(module_name) is not None
        if not is_available:
            missing.append(module_name)

    if "speech_recognition" in missing or "pyaudio" in missing:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Missing speech deps: {', '.join(missing)}",
        )
    if missing:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"Speech input ready; missing output deps: {', '.join(missing)}",
        )

    input_count = 0
    if list_devices and available_modules is None:
        try:
            input_count = _log_input_devices()
        except Exception as exc:  # noqa: BLE001 - probe should not raise
            return DiagnosticResult(
                name=name,
                status=DiagnosticStatus.FAIL,
                details=f"Microphone enumeration failed: {exc}",
            )
        if input_count == 0:
            return DiagnosticResult(
                name=name,
                status=DiagnosticStatus.WARN,
                details="No microphone input devices found",
            )

    details = "Speech dependencies available"
    if input_count:
        details += f" ({input_count} input devices)"
    return DiagnosticResult(name=name, status=DiagnosticStatus.PASS, details=details)


def _log_input_devices() -> int:
    pyaudio = importlib.import_module("pyaudio")
    audio = pyaudio.PyAudio()
    count = 0
    try:
        for i in range(audio.get_device_count()):
            info = audio.get_device_info_by_index(i)
            if info.get("maxInputChannels", 0) <= 0:
                continue
            count += 1
            logger.info(
                "[SPEECH DIAG] Device %s: %s | Input Channels: %s",
                i,
                info.get("name"),
                info.get("maxInputChannels"),
            )
    finally:
        audio.terminate()
    return count
