"""Camera hardware package."""

from hardware.camera import Frame, FrameCapturer

__all__ = ["Frame", "FrameCapturer"]
