"""Detection results parsed from free-text vision model replies.

Bounding boxes are normalized to the source frame and represented as corner
pairs ``(x1, y1, x2, y2)`` with ``0 <= x1 <= x2 <= 1`` and
``0 <= y1 <= y2 <= 1``. The all-zero box is the "no object" sentinel.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from core.errors import ParseAmbiguity


FORCED_NOTE = "forced after repetition"


class DetectionKind(str, Enum):
    """Classification of one model reply."""

    READY = "ready"
    DIRECTIONAL = "directional"
    NOT_VISIBLE = "not_visible"
    UNPARSED = "unparsed"


TERMINAL_KINDS = frozenset({DetectionKind.READY, DetectionKind.NOT_VISIBLE})


@dataclass(frozen=True)
class BoundingBox:
    """Normalized corner-pair rectangle within the frame."""

    x1: float
    y1: float
    x2: float
    y2: float

    def __post_init__(self) -> None:
        for value in (self.x1, self.y1, self.x2, self.y2):
            if not 0.0 <= value <= 1.0:
                raise ParseAmbiguity(f"bbox coordinate out of range: {value}")
        if self.x1 > self.x2 or self.y1 > self.y2:
            raise ParseAmbiguity(
                f"bbox corners out of order: {[self.x1, self.y1, self.x2, self.y2]}"
            )

    @property
    def is_empty(self) -> bool:
        return self.x1 == self.y1 == self.x2 == self.y2 == 0.0

    @property
    def center(self) -> tuple[float, float]:
        return ((self.x1 + self.x2) / 2.0, (self.y1 + self.y2) / 2.0)

    def as_list(self) -> list[float]:
        return [self.x1, self.y1, self.x2, self.y2]


@dataclass(frozen=True)
class DetectionResult:
    """Tagged parse result.

    ``command`` holds the directional phrase (``"move left"``) or the terminal
    keyword. ``advisory`` marks results parsed without a target description.
    """

    kind: DetectionKind
    raw_text: str
    command: str | None = None
    bbox: BoundingBox | None = None
    forced: bool = False
    note: str | None = None
    advisory: bool = False

    @property
    def is_ready(self) -> bool:
        return self.kind is DetectionKind.READY

    @property
    def history_key(self) -> str:
        """Key compared by stall detection."""

        if self.kind is DetectionKind.UNPARSED:
            return f"{self.kind.value}:{' '.join(self.raw_text.lower().split())}"
        return f"{self.kind.value}:{self.command or ''}"

    def feedback_text(self) -> str:
        """Human-readable text for UI and speech."""

        if self.kind is DetectionKind.READY:
            return "ready"
        if self.kind is DetectionKind.NOT_VISIBLE:
            return "not visible"
        if self.kind is DetectionKind.DIRECTIONAL and self.command:
            return self.command
        return self.raw_text.strip()
