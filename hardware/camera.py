"""Webcam frame capture and image payload encoding."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
import io
import threading
import time
from typing import Any

from config import ConfigController
from core.errors import InputUnavailable
from core.logging import logger


def _require_camera_deps() -> tuple[Any, Any]:
    import importlib
    import importlib.util

    if importlib.util.find_spec("cv2") is None:
        raise InputUnavailable("opencv-python is required for FrameCapturer")
    if importlib.util.find_spec("numpy") is None:
        raise InputUnavailable("numpy is required for FrameCapturer")

    cv2 = importlib.import_module("cv2")
    numpy = importlib.import_module("numpy")
    return cv2, numpy


def _require_pil_image() -> Any:
    import importlib
    import importlib.util

    if importlib.util.find_spec("PIL") is None:
        raise RuntimeError("Pillow is required to encode frames")
    return importlib.import_module("PIL.Image")


@dataclass(frozen=True)
class Frame:
    """One RGB raster captured from the camera.

    ``pixels`` is a ``(height, width, 3)`` uint8 array in RGB order.
    """

    width: int
    height: int
    pixels: Any = field(repr=False)
    timestamp: float = field(default_factory=time.time)

    def encode(self, image_format: str = "JPEG", quality: int = 85) -> bytes:
        """Encode the frame to JPEG or PNG bytes."""

        pil_image = _require_pil_image()
        image = pil_image.fromarray(self.pixels)
        buffer = io.BytesIO()
        image_format = image_format.upper()
        if image_format == "JPEG":
            image.save(buffer, format="JPEG", quality=quality)
        else:
            image.save(buffer, format=image_format)
        return buffer.getvalue()

    def to_base64(self, image_format: str = "JPEG", quality: int = 85) -> str:
        """Return the encoded frame as base64 text without a data-URL prefix."""

        return base64.b64encode(self.encode(image_format, quality)).decode("ascii")


class FrameCapturer:
    """Owns one OpenCV capture stream and turns reads into ``Frame`` objects."""

    def __init__(
        self,
        device_index: int = 0,
        width: int = 640,
        height: int = 480,
        photo_size: tuple[int, int] | None = None,
        mirror: bool = False,
    ) -> None:
        self.device_index = device_index
        self.preview_size = (width, height)
        self.photo_size = photo_size or self.preview_size
        self.mirror = mirror
        self._cv2: Any = None
        self._np: Any = None
        self._capture: Any = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: dict[str, Any] | None = None) -> "FrameCapturer":
        if config is None:
            config = ConfigController.get_instance().get_config()
        camera_cfg = config.get("camera") or {}
        width = int(camera_cfg.get("width", 640))
        height = int(camera_cfg.get("height", 480))
        return cls(
            device_index=int(camera_cfg.get("device_index", 0)),
            width=width,
            height=height,
            photo_size=(
                int(camera_cfg.get("photo_width", width)),
                int(camera_cfg.get("photo_height", height)),
            ),
            mirror=bool(camera_cfg.get("mirror", False)),
        )

    @property
    def is_streaming(self) -> bool:
        return self._capture is not None

    def start(self) -> None:
        """Open the camera device; raises ``InputUnavailable`` on failure."""

        with self._lock:
            if self._capture is not None:
                return
            self._cv2, self._np = _require_camera_deps()
            capture = self._cv2.VideoCapture(self.device_index)
            if not capture.isOpened():
                capture.release()
                raise InputUnavailable("Could not access the camera.")
            self._apply_size(capture, self.preview_size)
            self._capture = capture
        logger.info(
            "[CAMERA] Stream started on device %s at %sx%s",
            self.device_index,
            *self.preview_size,
        )

    def stop(self) -> None:
        """Release the camera device."""

        with self._lock:
            capture, self._capture = self._capture, None
        if capture is not None:
            capture.release()
            logger.info("[CAMERA] Stream stopped")

    def capture(self) -> Frame | None:
        """Return the current frame, or ``None`` when no usable frame exists."""

        with self._lock:
            if self._capture is None:
                return None
            return self._read_frame(self._capture)

    def capture_photo(self) -> Frame | None:
        """Capture the final output photo at the configured photo size."""

        with self._lock:
            if self._capture is None:
                return None
            if self.photo_size == self.preview_size:
                return self._read_frame(self._capture)
            self._apply_size(self._capture, self.photo_size)
            try:
                # Discard one stale buffered frame after the mode switch.
                self._capture.read()
                return self._read_frame(self._capture)
            finally:
                self._apply_size(self._capture, self.preview_size)

    def _apply_size(self, capture: Any, size: tuple[int, int]) -> None:
        capture.set(self._cv2.CAP_PROP_FRAME_WIDTH, size[0])
        capture.set(self._cv2.CAP_PROP_FRAME_HEIGHT, size[1])

    def _read_frame(self, capture: Any) -> Frame | None:
        ok, bgr = capture.read()
        if not ok or bgr is None:
            return None
        height, width = bgr.shape[:2]
        if width == 0 or height == 0:
            return None
        rgb = bgr[:, :, ::-1]
        if self.mirror:
            rgb = self._np.fliplr(rgb)
        return Frame(width=int(width), height=int(height), pixels=self._np.ascontiguousarray(rgb))

    def __enter__(self) -> "FrameCapturer":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
