"""Student number resolution.

Tried in order, first hit wins:
1. the file name,
2. the template digit boxes (one vision call per digit),
3. full-page OCR.
"""

import logging
import re
from pathlib import PurePath

from outcome_tracker.core.config import settings
from outcome_tracker.pipeline.raster import RasterPage, encode_png
from outcome_tracker.pipeline.vision import STUDENT_ID_PROMPT, VisionScoreReader

logger = logging.getLogger(__name__)

FILENAME_PATTERN = re.compile(r"\b(20\d{4,6}|\d{7,12})\b")
OCR_PATTERN = re.compile(r"\d{5,12}")
MIN_DIGITS = 7


def student_number_from_filename(file_name: str | None) -> str | None:
    if not file_name:
        return None
    match = FILENAME_PATTERN.search(PurePath(file_name).stem)
    return match.group(1) if match else None


def _box_value(box: dict, key: str, size: int) -> int:
    if box.get(key) is not None:
        return int(round(float(box[key])))
    return int(round(float(box.get(f"{key}_percent") or 0) * size / 100))


def resolve_box(box: dict, width: int, height: int) -> tuple[int, int, int, int]:
    """Absolute (x, y, w, h) for an absolute or percentage digit box."""
    return (
        _box_value(box, "x", width),
        _box_value(box, "y", height),
        _box_value(box, "w", width),
        _box_value(box, "h", height),
    )


class StudentIdentifier:
    """Resolves the student number of an exam page."""

    def __init__(self, reader: VisionScoreReader, digit_boxes: list[dict] | None = None):
        self.reader = reader
        self.digit_boxes = settings.STUDENT_NUMBER_BOXES if digit_boxes is None else digit_boxes

    def identify(self, file_name: str | None, page: RasterPage) -> str | None:
        number = student_number_from_filename(file_name)
        if number:
            logger.debug(f"[IDENTIFY] {file_name}: student number from file name")
            return number

        if self.digit_boxes:
            try:
                number = self._from_digit_boxes(page)
            except Exception as e:
                logger.warning(f"[IDENTIFY] {file_name}: digit boxes failed: {e}")
                number = None
            if number:
                logger.debug(f"[IDENTIFY] {file_name}: student number from digit boxes")
                return number

        try:
            text = self.reader.extract_text(page.buffer, STUDENT_ID_PROMPT)
        except Exception as e:
            logger.warning(f"[IDENTIFY] {file_name}: full-page OCR failed: {e}")
            return None
        match = OCR_PATTERN.search(text or "")
        if match:
            logger.debug(f"[IDENTIFY] {file_name}: student number from full-page OCR")
            return match.group(0)

        logger.info(f"[IDENTIFY] {file_name}: no student number (file name, digit boxes, OCR)")
        return None

    def _from_digit_boxes(self, page: RasterPage) -> str | None:
        image = page.to_image()
        width, height = image.size

        crops = []
        for box in self.digit_boxes:
            x, y, w, h = resolve_box(box, width, height)
            if w <= 0 or h <= 0 or x < 0 or y < 0 or x + w > width or y + h > height:
                logger.debug(f"[IDENTIFY] Digit box {box} outside {width}x{height}")
                continue
            crops.append(encode_png(image.crop((x, y, x + w, y + h))))

        if len(crops) != len(self.digit_boxes):
            logger.info(f"[IDENTIFY] Cropped {len(crops)} of {len(self.digit_boxes)} digit boxes")
            return None

        digits = "".join(str(self.reader.extract_number(c)) for c in crops)
        return digits if len(digits) >= MIN_DIGITS else None
