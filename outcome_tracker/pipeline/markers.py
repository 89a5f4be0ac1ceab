"""Calibration marker detection.

The exam sheet carries four solid square marks near its corners. Detection
is a pure classification step: it never raises, it reports why it failed.
"""

import logging
import math
from dataclasses import dataclass

import cv2
import numpy as np

from outcome_tracker.core.config import settings
from outcome_tracker.pipeline.raster import RasterPage

logger = logging.getLogger(__name__)

Point = tuple[float, float]

REASON_DISABLED = "detector_disabled"
REASON_NOT_FOUND = "not_found"
REASON_ERROR = "detection_error"


@dataclass(frozen=True)
class FourPoints:
    """Marker centers in page pixel coordinates."""

    top_left: Point
    top_right: Point
    bottom_right: Point
    bottom_left: Point

    def as_array(self) -> np.ndarray:
        return np.array(
            [self.top_left, self.top_right, self.bottom_right, self.bottom_left],
            dtype=np.float32,
        )


@dataclass(frozen=True)
class MarkerDetection:
    success: bool
    corners: FourPoints | None = None
    reason: str | None = None

    @classmethod
    def failed(cls, reason: str) -> "MarkerDetection":
        return cls(success=False, corners=None, reason=reason)


@dataclass(frozen=True)
class MarkerDetectorConfig:
    # blob area relative to page area
    min_area_ratio: float = 0.00003
    max_area_ratio: float = 0.01
    # w/h of the bounding box
    min_aspect: float = 0.7
    max_aspect: float = 1.3
    # filled area / bounding box area
    min_solidity: float = 0.8
    # max distance from the page corner, relative to the page diagonal
    max_corner_distance: float = 0.25


class MarkerDetector:
    """Finds the four corner calibration marks on a raster page."""

    def __init__(self, enabled: bool | None = None, config: MarkerDetectorConfig | None = None):
        self.enabled = settings.ENABLE_PERSPECTIVE_CORRECTION if enabled is None else enabled
        self.config = config or MarkerDetectorConfig()

    def detect(self, page: RasterPage) -> MarkerDetection:
        if not self.enabled:
            return MarkerDetection.failed(REASON_DISABLED)
        try:
            return self._detect(page)
        except Exception as e:
            logger.warning(f"[MARKERS] Detection error: {e}")
            return MarkerDetection.failed(REASON_ERROR)

    def _detect(self, page: RasterPage) -> MarkerDetection:
        gray = cv2.imdecode(np.frombuffer(page.buffer, np.uint8), cv2.IMREAD_GRAYSCALE)
        if gray is None or gray.size == 0:
            return MarkerDetection.failed(REASON_ERROR)

        h, w = gray.shape[:2]
        blur = cv2.GaussianBlur(gray, (5, 5), 0)
        _, th = cv2.threshold(blur, 0, 255, cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU)
        contours, _ = cv2.findContours(th, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        page_area = float(w * h)
        cfg = self.config
        candidates: list[Point] = []
        for cnt in contours:
            area = cv2.contourArea(cnt)
            if not (cfg.min_area_ratio * page_area <= area <= cfg.max_area_ratio * page_area):
                continue
            x, y, bw, bh = cv2.boundingRect(cnt)
            if bh == 0:
                continue
            aspect = bw / float(bh)
            if not (cfg.min_aspect <= aspect <= cfg.max_aspect):
                continue
            if area / float(bw * bh) < cfg.min_solidity:
                continue
            candidates.append((x + bw / 2.0, y + bh / 2.0))

        if len(candidates) < 4:
            return MarkerDetection.failed(REASON_NOT_FOUND)

        diagonal = math.hypot(w, h)
        page_corners = [(0.0, 0.0), (float(w), 0.0), (float(w), float(h)), (0.0, float(h))]
        chosen: list[Point] = []
        for corner in page_corners:
            best = min(candidates, key=lambda c: math.dist(c, corner))
            if math.dist(best, corner) > cfg.max_corner_distance * diagonal or best in chosen:
                return MarkerDetection.failed(REASON_NOT_FOUND)
            chosen.append(best)

        corners = FourPoints(
            top_left=chosen[0],
            top_right=chosen[1],
            bottom_right=chosen[2],
            bottom_left=chosen[3],
        )
        logger.debug(f"[MARKERS] Found markers: {corners}")
        return MarkerDetection(success=True, corners=corners)
