"""Vision package exports."""

from vision.auto_center import AutoCenterLoop, LoopState
from vision.client import (
    GeminiProxyClient,
    OpenAIProxyClient,
    VisionQueryClient,
    VisionResponse,
    build_vision_client,
)
from vision.detections import BoundingBox, DetectionKind, DetectionResult
from vision.parser import ResponseHistory, ResponseParser

__all__ = [
    "AutoCenterLoop",
    "BoundingBox",
    "DetectionKind",
    "DetectionResult",
    "GeminiProxyClient",
    "LoopState",
    "OpenAIProxyClient",
    "ResponseHistory",
    "ResponseParser",
    "VisionQueryClient",
    "VisionResponse",
    "build_vision_client",
]
