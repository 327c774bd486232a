"""Tests for vision reply parsing and the stall override."""

from __future__ import annotations

import pytest

from core.errors import ParseAmbiguity
from vision.detections import FORCED_NOTE, BoundingBox, DetectionKind
from vision.parser import ResponseHistory, ResponseParser, classify_command, parse_bbox


@pytest.mark.parametrize(
    "bbox",
    [
        [0.45, 0.45, 0.55, 0.55],
        [0.0, 0.0, 1.0, 1.0],
        [0.2, 0.3, 0.2, 0.3],
    ],
)
def test_ready_with_valid_box_returns_that_box(bbox: list[float]) -> None:
    parser = ResponseParser()
    text = f"COMMAND: ready\nBBOX: [{bbox[0]},{bbox[1]},{bbox[2]},{bbox[3]}]"

    result = parser.parse(text, "red cup")

    assert result.kind is DetectionKind.READY
    assert result.bbox is not None
    assert result.bbox.as_list() == bbox
    assert not result.forced


def test_not_visible_without_command_line() -> None:
    result = ResponseParser().parse("I looked around but the mug is not visible.", "mug")

    assert result.kind is DetectionKind.NOT_VISIBLE
    assert result.command == "not visible"


def test_malformed_box_downgrades_to_unparsed() -> None:
    parser = ResponseParser()

    reversed_x = parser.parse("COMMAND: ready\nBBOX: [0.7,0.2,0.3,0.5]", "cup")
    out_of_range = parser.parse("COMMAND: move left\nBBOX: [0.1,0.2,1.4,0.5]", "cup")
    three_values = parser.parse("COMMAND: move up\nBBOX: [0.1,0.2,0.3]", "cup")

    for result in (reversed_x, out_of_range, three_values):
        assert result.kind is DetectionKind.UNPARSED
        assert result.bbox is None


def test_ready_with_sentinel_box_is_not_visible() -> None:
    result = ResponseParser().parse("COMMAND: ready\nBBOX: [0,0,0,0]", "cup")

    assert result.kind is DetectionKind.NOT_VISIBLE
    assert result.note == "empty bbox"


def test_structured_reply_is_case_insensitive() -> None:
    result = ResponseParser().parse("Command: Move Left.\nbbox = [0.7, 0.3, 0.9, 0.6]", "red cup")

    assert result.kind is DetectionKind.DIRECTIONAL
    assert result.command == "move left"
    assert result.bbox == BoundingBox(0.7, 0.3, 0.9, 0.6)
    assert result.feedback_text() == "move left"


def test_keyword_fallback_takes_first_keyword() -> None:
    result = ResponseParser().parse("Please move right, then it will be ready.", "cup")

    assert result.kind is DetectionKind.DIRECTIONAL
    assert result.command == "move right"


def test_not_ready_is_not_ready() -> None:
    result = ResponseParser().parse("It is not ready yet, the cup is too far left.", "cup")

    assert result.kind is DetectionKind.DIRECTIONAL
    assert result.command == "move left"


@pytest.mark.parametrize(
    "reply",
    [
        "The cup is not yet ready, move it left.",
        "It isn't ready, the cup is too far left.",
        "Not quite ready: left a bit.",
        "The shot isn’t ready. Left please.",
        "COMMAND: not ready, left",
    ],
)
def test_negated_ready_is_not_ready(reply: str) -> None:
    result = ResponseParser().parse(reply, "cup")

    assert result.kind is DetectionKind.DIRECTIONAL
    assert result.command == "move left"


def test_ready_after_negated_clause_still_counts() -> None:
    assert classify_command("it was not centered before, now it is ready") == (
        DetectionKind.READY,
        "ready",
    )
    assert classify_command("never mind the lamp. ready") == (DetectionKind.READY, "ready")


def test_bare_directions_map_to_moves() -> None:
    assert classify_command("farther") == (DetectionKind.DIRECTIONAL, "move back")
    assert classify_command("closer") == (DetectionKind.DIRECTIONAL, "move closer")
    assert classify_command("") == (DetectionKind.UNPARSED, None)
    assert classify_command("a lovely kitchen") == (DetectionKind.UNPARSED, None)


def test_unparsed_keeps_raw_text_for_feedback() -> None:
    result = ResponseParser().parse("A kitchen table with a plant.", "cup")

    assert result.kind is DetectionKind.UNPARSED
    assert result.feedback_text() == "A kitchen table with a plant."


def test_empty_target_marks_result_advisory() -> None:
    result = ResponseParser().parse("COMMAND: move up\nBBOX: [0.4,0.0,0.6,0.2]", "  ")

    assert result.advisory
    assert result.kind is DetectionKind.DIRECTIONAL


def test_fourth_identical_move_is_forced_ready() -> None:
    parser = ResponseParser()
    reply = "COMMAND: move up\nBBOX: [0.4,0.0,0.6,0.2]"

    results = [parser.parse(reply, "red cup") for _ in range(4)]

    assert [r.kind for r in results[:3]] == [DetectionKind.DIRECTIONAL] * 3
    assert results[3].kind is DetectionKind.READY
    assert results[3].forced
    assert results[3].note == FORCED_NOTE
    assert "move up" in results[3].raw_text.lower()


def test_stall_override_ignores_fourth_reply_text() -> None:
    parser = ResponseParser()
    for _ in range(3):
        parser.parse("COMMAND: move left", "cup")

    result = parser.parse("COMMAND: move right", "cup")

    assert result.kind is DetectionKind.READY
    assert result.forced


def test_varied_moves_never_force() -> None:
    parser = ResponseParser()
    replies = ["COMMAND: move up", "COMMAND: move left", "COMMAND: move up", "COMMAND: move up"]

    results = [parser.parse(reply, "cup") for reply in replies]

    assert not any(result.forced for result in results)


def test_repeated_not_visible_is_never_forced() -> None:
    parser = ResponseParser()

    results = [parser.parse("COMMAND: not visible\nBBOX: [0,0,0,0]", "cup") for _ in range(5)]

    assert all(result.kind is DetectionKind.NOT_VISIBLE for result in results)
    assert not any(result.forced for result in results)


def test_repeated_unparsed_text_is_forced() -> None:
    parser = ResponseParser()

    results = [parser.parse("Something  blurry", "cup") for _ in range(4)]

    assert results[2].kind is DetectionKind.UNPARSED
    assert results[3].kind is DetectionKind.READY
    assert results[3].forced


def test_reset_clears_history() -> None:
    parser = ResponseParser()
    for _ in range(3):
        parser.parse("COMMAND: move down", "cup")

    parser.reset()
    result = parser.parse("COMMAND: move down", "cup")

    assert result.kind is DetectionKind.DIRECTIONAL
    assert len(parser.history) == 1


def test_history_window_size_is_at_least_two() -> None:
    history = ResponseHistory(size=1)
    history.append("directional:move up")

    assert history.size == 2
    assert not history.is_stalled()


def test_parse_bbox_rejects_wrong_arity() -> None:
    with pytest.raises(ParseAmbiguity):
        parse_bbox("[0.1, 0.2]")
    assert parse_bbox("(0.1, 0.2, 0.3, 0.4)").center == pytest.approx((0.2, 0.3))
