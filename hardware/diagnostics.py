"""Diagnostics routines for the camera."""

from __future__ import annotations

import importlib.util
from dataclasses import dataclass
from typing import Callable

from core.errors import InputUnavailable
from diagnostics.models import DiagnosticResult, DiagnosticStatus
from hardware.camera import FrameCapturer


@dataclass(frozen=True)
class HardwareProbeConfig:
    """Configuration for camera checks."""

    require_all: bool = False
    open_device: bool = True


def probe(
    config: HardwareProbeConfig | None = None,
    available_modules: set[str] | None = None,
    capturer_factory: Callable[[], FrameCapturer] | None = None,
) -> DiagnosticResult:
    """Check camera dependencies and, optionally, grab one frame.

    Args:
        config: Optional configuration for probe behavior.
        available_modules: Optional override set for offline testing.
        capturer_factory: Optional capturer constructor for offline testing.

    Returns:
        Diagnostic result indicating camera readiness.
    """

    name = "camera"
    settings = config or HardwareProbeConfig()

    missing: list[str] = []
    for module_name in ("cv2", "numpy", "PIL"):
        if available_modules is not None:
            is_available = module_name in available_modules
        else:
            is_available = importlib.util.find_spec(module_name) is not None
        if not is_available:
            missing.append(module_name)

    if missing:
        status = DiagnosticStatus.FAIL if settings.require_all else DiagnosticStatus.WARN
        return DiagnosticResult(
            name=name,
            status=status,
            details=f"Missing camera deps: {', '.join(missing)}",
        )

    if not settings.open_device:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.PASS,
            details="Camera dependencies available",
        )

    capturer = capturer_factory() if capturer_factory is not None else FrameCapturer.from_config()
    try:
        capturer.start()
        frame = capturer.capture()
    except InputUnavailable as exc:
        return DiagnosticResult(name=name, status=DiagnosticStatus.FAIL, details=str(exc))
    finally:
        capturer.stop()

    if frame is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details="Camera opened but produced no usable frame yet",
        )
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=f"Camera frame {frame.width}x{frame.height}",
    )
