"""Total-score region extraction.

Two strategies share one interface. The perspective strategy warps the page
onto the canonical canvas using the detected markers; the template strategy
scales the reference box to the raster's real size. Which one runs first is
decided by ENABLE_PERSPECTIVE_CORRECTION.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np

from outcome_tracker.core.config import settings
from outcome_tracker.core.exceptions import (
    RegionExtractionError,
    RegionOutOfBoundsError,
)
from outcome_tracker.pipeline.markers import MarkerDetection
from outcome_tracker.pipeline.raster import RasterPage, encode_png

logger = logging.getLogger(__name__)

METHOD_MARKERS = "markers"
METHOD_TEMPLATE = "template"


@dataclass(frozen=True)
class Box:
    x: int
    y: int
    w: int
    h: int

    @property
    def area(self) -> int:
        return max(self.w, 0) * max(self.h, 0)


@dataclass(frozen=True)
class RegionCrop:
    """Cropped total-score region as PNG bytes."""

    buffer: bytes
    box: Box
    method: str
    path: str | None = None


def _clamp(v: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, v))


def clip_box(box: Box, width: int, height: int) -> Box:
    """Clip a box to the image; the origin stays inside and the box keeps at least 1x1."""
    if width <= 0 or height <= 0:
        raise RegionOutOfBoundsError(f"Image has no area ({width}x{height})")
    x = _clamp(box.x, 0, width - 1)
    y = _clamp(box.y, 0, height - 1)
    w = _clamp(box.w, 1, width - x)
    h = _clamp(box.h, 1, height - y)
    return Box(x, y, w, h)


class RegionStrategy(ABC):
    """Base class for total-score region strategies."""

    method: str = ""

    @abstractmethod
    def supports(self, markers: MarkerDetection) -> bool:
        """Whether this strategy can run with the given marker detection."""
        pass

    @abstractmethod
    def crop(self, page: RasterPage, markers: MarkerDetection) -> RegionCrop:
        pass


class PerspectiveRegionStrategy(RegionStrategy):
    """Warp the page onto the canonical canvas and crop the fixed box."""

    method = METHOD_MARKERS

    def __init__(
        self,
        canvas_size: tuple[int, int] | None = None,
        box: tuple[int, int, int, int] | None = None,
    ):
        self.canvas_size = canvas_size or (settings.CANONICAL_WIDTH, settings.CANONICAL_HEIGHT)
        self.box = Box(*(box or settings.TOTAL_SCORE_BOX))

    def supports(self, markers: MarkerDetection) -> bool:
        return markers.success and markers.corners is not None

    def crop(self, page: RasterPage, markers: MarkerDetection) -> RegionCrop:
        if markers.corners is None:
            raise RegionExtractionError("Perspective correction requires four markers")

        image = cv2.imdecode(np.frombuffer(page.buffer, np.uint8), cv2.IMREAD_COLOR)
        if image is None or image.size == 0:
            raise RegionExtractionError("Could not decode page for warping")

        out_w, out_h = self.canvas_size
        dst = np.array(
            [
                [0, 0],
                [out_w - 1, 0],
                [out_w - 1, out_h - 1],
                [0, out_h - 1],
            ],
            dtype=np.float32,
        )
        M = cv2.getPerspectiveTransform(markers.corners.as_array(), dst)
        warped = cv2.warpPerspective(image, M, (out_w, out_h))

        box = clip_box(self.box, out_w, out_h)
        roi = warped[box.y:box.y + box.h, box.x:box.x + box.w]
        ok, encoded = cv2.imencode(".png", roi)
        if not ok:
            raise RegionExtractionError("Could not encode warped region")
        return RegionCrop(buffer=encoded.tobytes(), box=box, method=self.method)


class TemplateRegionStrategy(RegionStrategy):
    """Scale the reference template box to the page and crop the unwarped image."""

    method = METHOD_TEMPLATE

    def __init__(
        self,
        template_size: tuple[int, int] | None = None,
        box: tuple[int, int, int, int] | None = None,
    ):
        self.template_size = template_size or (settings.TEMPLATE_WIDTH, settings.TEMPLATE_HEIGHT)
        self.box = Box(*(box or settings.TOTAL_SCORE_BOX))

    def supports(self, markers: MarkerDetection) -> bool:
        return True

    def scaled_box(self, width: int, height: int) -> Box:
        tpl_w, tpl_h = self.template_size
        sx = width / tpl_w
        sy = height / tpl_h
        return Box(
            x=round(self.box.x * sx),
            y=round(self.box.y * sy),
            w=round(self.box.w * sx),
            h=round(self.box.h * sy),
        )

    def crop(self, page: RasterPage, markers: MarkerDetection) -> RegionCrop:
        image = page.to_image()
        width, height = image.size
        box = clip_box(self.scaled_box(width, height), width, height)
        if box.area == 0:
            raise RegionOutOfBoundsError(f"Score box {box} collapsed on {width}x{height} page")

        roi = image.crop((box.x, box.y, box.x + box.w, box.y + box.h))
        return RegionCrop(buffer=encode_png(roi), box=box, method=self.method)


class RegionExtractor:
    """Runs the preferred strategy and degrades to the template path."""

    def __init__(
        self,
        perspective_enabled: bool | None = None,
        perspective: RegionStrategy | None = None,
        template: RegionStrategy | None = None,
        save_debug_crops: bool | None = None,
        output_dir: str | Path | None = None,
    ):
        if perspective_enabled is None:
            perspective_enabled = settings.ENABLE_PERSPECTIVE_CORRECTION
        self.perspective = (perspective or PerspectiveRegionStrategy()) if perspective_enabled else None
        self.template = template or TemplateRegionStrategy()
        self.save_debug_crops = settings.SAVE_DEBUG_CROPS if save_debug_crops is None else save_debug_crops
        self.output_dir = Path(output_dir) if output_dir else Path(settings.WORK_DIR) / "crops"

    def extract(self, page: RasterPage, markers: MarkerDetection) -> RegionCrop:
        crop = None
        if self.perspective is not None and self.perspective.supports(markers):
            try:
                crop = self.perspective.crop(page, markers)
            except Exception as e:
                logger.warning(f"[REGION] Warp failed, using template box: {e}")

        if crop is None:
            try:
                crop = self.template.crop(page, markers)
            except RegionExtractionError:
                raise
            except Exception as e:
                raise RegionExtractionError(f"Template crop failed: {e}")

        logger.debug(f"[REGION] method={crop.method} box={crop.box}")
        if self.save_debug_crops:
            crop = RegionCrop(
                buffer=crop.buffer,
                box=crop.box,
                method=crop.method,
                path=self._save(crop),
            )
        return crop

    def _save(self, crop: RegionCrop) -> str | None:
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path = self.output_dir / f"crop_{crop.method}_{uuid.uuid4().hex[:8]}.png"
            path.write_bytes(crop.buffer)
            return str(path)
        except OSError as e:
            logger.warning(f"[REGION] Could not write debug crop: {e}")
            return None
