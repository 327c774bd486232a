"""Prompt text sent with each frame."""

from __future__ import annotations

from vision.parser import KEYWORDS


DEBUG_DESCRIPTION_PROMPT = "Describe what you see in this image. Be concise."

OBJECT_LIST_PROMPT = (
    "What do you see in the image? Only respond with a list of objects detected in "
    "the image in less then three words for each object, also include their positions "
    "and directions on how to get them to the center."
)


def build_center_prompt(target_description: str) -> str:
    """Return the framing prompt for ``target_description``.

    The reply format is requested as ``COMMAND:``/``BBOX:`` lines; the parser
    still accepts looser replies when the model ignores it.
    """

    commands = ", ".join(f"'{keyword}'" for keyword in KEYWORDS)
    return f"""USER DESCRIPTION: "{target_description.strip()}"

You are a vision assistant. Your job is to help the user frame the object or person they described above in the camera view so that a photo can be taken. Look for anything that could plausibly match the user's description, even if it is not a perfect match. Err on the side of inclusion: if there is any object that could reasonably be what the user described, use that. Do NOT default to people unless the user described a person. Do NOT try to identify who or what it is beyond the user's description. Do NOT comment on identity. Only give spatial directions for framing the described object or person in the view.

Instructions:
- If the described object or person (or the best plausible match) is fully within the central fifth (the middle 20% horizontally and vertically) of the camera frame, the command is 'ready'.
- If it is not fully within the central fifth, the command is the single move that brings it closer to the center.
- If the described object or person is not visible, the command is 'not visible' and the box is [0,0,0,0].
- Do not guess. Do not comment on identity. Do not add extra text.

Reply with exactly two lines:
COMMAND: <one of {commands}>
BBOX: [x1,y1,x2,y2] normalized to the frame, each value between 0 and 1, x1<=x2 and y1<=y2
"""
