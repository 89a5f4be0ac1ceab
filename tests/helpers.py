"""Test doubles and synthetic scan images."""

from io import BytesIO

import cv2
import numpy as np
from PIL import Image

from outcome_tracker.core.exceptions import VisionExtractionError
from outcome_tracker.pipeline.vision import NUMBER_PROMPT, VisionScoreReader


class FakeVisionReader(VisionScoreReader):
    """Vision reader returning canned answers and recording every call."""

    def __init__(self, score: int | None = 75, page_text: str | None = None, digits: list[int] | None = None):
        self.score = score
        self.page_text = page_text
        self.digits = list(digits or [])
        self.calls: list[str] = []

    def extract_text(self, image: bytes, prompt: str) -> str | None:
        if prompt == NUMBER_PROMPT:
            self.calls.append("number")
            if self.digits:
                return str(self.digits.pop(0))
            if self.score is None:
                raise VisionExtractionError("Gemini Vision API error: unavailable")
            return str(self.score)
        self.calls.append("text")
        return self.page_text


def make_png(width: int = 827, height: int = 1170, color: str = "white") -> bytes:
    buf = BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def make_marked_png(width: int = 1240, height: int = 1754, size: int = 30, margin: int = 40) -> bytes:
    """White page with a solid black square near each corner."""
    img = np.full((height, width, 3), 255, dtype=np.uint8)
    for x, y in (
        (margin, margin),
        (width - margin - size, margin),
        (width - margin - size, height - margin - size),
        (margin, height - margin - size),
    ):
        cv2.rectangle(img, (x, y), (x + size, y + size), (0, 0, 0), thickness=-1)
    ok, encoded = cv2.imencode(".png", img)
    assert ok
    return encoded.tobytes()
