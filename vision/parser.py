"""Parse free-text vision replies into detection results.

Three reply styles are accepted, in order of preference:

* the structured ``COMMAND: <cmd>`` / ``BBOX: [x1,y1,x2,y2]`` lines,
* a bare keyword anywhere in the text (``ready``, ``not visible``,
  ``move left`` ...),
* bare directions (``left``, ``closer``, ``farther`` ...) as the original
  prompt asked for.

A parser instance keeps a short history of classifications; when the same
non-terminal answer has been seen for a full window, the next parse is forced
to READY so the auto-center loop always terminates.
"""

from __future__ import annotations

from collections import deque
from dataclasses import replace
import re

from core.errors import ParseAmbiguity
from core.logging import logger
from vision.detections import (
    FORCED_NOTE,
    TERMINAL_KINDS,
    BoundingBox,
    DetectionKind,
    DetectionResult,
)


KEYWORDS: tuple[str, ...] = (
    "ready",
    "not visible",
    "move left",
    "move right",
    "move up",
    "move down",
    "move closer",
    "move back",
)

BARE_DIRECTIONS: dict[str, str] = {
    "left": "move left",
    "right": "move right",
    "up": "move up",
    "down": "move down",
    "closer": "move closer",
    "farther": "move back",
    "further": "move back",
    "back": "move back",
}

_COMMAND_RE = re.compile(r"command\s*[:=]\s*(.*)")
_BBOX_RE = re.compile(r"bbox\s*[:=]\s*(.*)")
_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.\d*|\.\d+|\d+)(?:e[-+]?\d+)?")
_KEYWORD_RE = re.compile(
    r"\bready\b|\bnot visible\b|\bmove (?:left|right|up|down|closer|back)\b"
)
_BARE_DIRECTION_RE = re.compile(r"\b(" + "|".join(BARE_DIRECTIONS) + r")\b")
# A negator up to two words before "ready": "not ready", "isn't ready", "not yet ready".
_NEGATED_RE = re.compile(r"(?:\bnot|\bnever|\bcannot|n['’]t)(?:\s+[\w'’]+){0,2}\s+$")
_COMMAND_STRIP = " \t.,;:!'\"`*[]()"


class ResponseHistory:
    """Sliding window of recent classification keys."""

    def __init__(self, size: int = 3) -> None:
        self._entries: deque[str] = deque(maxlen=max(2, int(size)))

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def size(self) -> int:
        return self._entries.maxlen or 0

    @property
    def entries(self) -> list[str]:
        return list(self._entries)

    def append(self, key: str) -> None:
        self._entries.append(key)

    def clear(self) -> None:
        self._entries.clear()

    def is_stalled(self) -> bool:
        """Return whether the window is full of one non-terminal key."""

        if len(self._entries) < self.size:
            return False
        first = self._entries[0]
        if first.split(":", 1)[0] in {kind.value for kind in TERMINAL_KINDS}:
            return False
        return all(entry == first for entry in self._entries)


def parse_bbox(text: str) -> BoundingBox:
    """Parse ``[x1, y1, x2, y2]`` into a validated box.

    Raises:
        ParseAmbiguity: when there are not exactly four numbers or the box
            violates the normalized corner ordering.
    """

    values = _NUMBER_RE.findall(text)
    if len(values) != 4:
        raise ParseAmbiguity(f"expected 4 bbox values, got {len(values)}")
    x1, y1, x2, y2 = (float(value) for value in values)
    return BoundingBox(x1, y1, x2, y2)


def classify_command(command: str) -> tuple[DetectionKind, str | None]:
    """Map a command phrase to its detection kind and canonical phrase."""

    command = " ".join(command.strip(_COMMAND_STRIP).split())
    if not command:
        return DetectionKind.UNPARSED, None
    for match in _KEYWORD_RE.finditer(command):
        keyword = match.group(0)
        if keyword == "ready":
            if _NEGATED_RE.search(command[: match.start()]):
                continue
            return DetectionKind.READY, "ready"
        if keyword == "not visible":
            return DetectionKind.NOT_VISIBLE, "not visible"
        return DetectionKind.DIRECTIONAL, keyword
    bare = _BARE_DIRECTION_RE.search(command)
    if bare:
        return DetectionKind.DIRECTIONAL, BARE_DIRECTIONS[bare.group(1)]
    return DetectionKind.UNPARSED, None


class ResponseParser:
    """Stateful parser: one instance per auto-center run."""

    def __init__(self, history_size: int = 3) -> None:
        self.history = ResponseHistory(history_size)

    def reset(self) -> None:
        self.history.clear()

    def parse(self, response_text: str, target_description: str = "") -> DetectionResult:
        result = self._classify(response_text or "")
        if not target_description.strip():
            result = replace(result, advisory=True)

        stalled = self.history.is_stalled()
        self.history.append(result.history_key)
        if stalled:
            logger.info("[VISION] Stall override after %s identical replies", self.history.size)
            return DetectionResult(
                kind=DetectionKind.READY,
                raw_text=result.raw_text,
                command="ready",
                bbox=result.bbox,
                forced=True,
                note=FORCED_NOTE,
                advisory=result.advisory,
            )
        return result

    def _classify(self, response_text: str) -> DetectionResult:
        lowered = response_text.lower()
        command_text: str | None = None
        bbox_text: str | None = None
        for line in lowered.splitlines():
            if command_text is None:
                match = _COMMAND_RE.search(line)
                if match:
                    command_text = match.group(1)
                    continue
            if bbox_text is None:
                match = _BBOX_RE.search(line)
                if match:
                    bbox_text = match.group(1)

        bbox: BoundingBox | None = None
        if bbox_text is not None:
            try:
                bbox = parse_bbox(bbox_text)
            except ParseAmbiguity as exc:
                logger.info("[VISION] Rejected bbox %r: %s", bbox_text.strip(), exc)
                return DetectionResult(kind=DetectionKind.UNPARSED, raw_text=response_text)

        if command_text is not None:
            kind, command = classify_command(command_text)
        else:
            kind, command = classify_command(lowered)

        if kind is DetectionKind.UNPARSED:
            return DetectionResult(kind=kind, raw_text=response_text, bbox=bbox)
        if kind is DetectionKind.READY and bbox is not None and bbox.is_empty:
            return DetectionResult(
                kind=DetectionKind.NOT_VISIBLE,
                raw_text=response_text,
                command="not visible",
                bbox=bbox,
                note="empty bbox",
            )
        return DetectionResult(kind=kind, raw_text=response_text, command=command, bbox=bbox)
