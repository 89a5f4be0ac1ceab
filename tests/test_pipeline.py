"""Raster, marker, region, identifier and vision parsing tests."""

from io import BytesIO

import fitz
import pytest
from google.api_core import exceptions as google_exceptions
from PIL import Image

from outcome_tracker.core.exceptions import (
    DocumentConversionError,
    RegionExtractionError,
    RegionOutOfBoundsError,
    VisionConfigurationError,
    VisionExtractionError,
)
from outcome_tracker.pipeline.identifier import StudentIdentifier, resolve_box, student_number_from_filename
from outcome_tracker.pipeline.markers import FourPoints, MarkerDetection, MarkerDetector
from outcome_tracker.pipeline.raster import RasterConverter, RasterPage
from outcome_tracker.pipeline.regions import (
    Box,
    PerspectiveRegionStrategy,
    RegionExtractor,
    RegionStrategy,
    TemplateRegionStrategy,
    clip_box,
)
from outcome_tracker.pipeline import vision
from outcome_tracker.pipeline.vision import (
    NUMBER_PROMPT,
    GeminiVisionReader,
    VisionScoreReader,
    parse_number,
    parse_text,
)

from tests.helpers import FakeVisionReader, make_marked_png, make_png


def _page(buffer: bytes) -> RasterPage:
    img = Image.open(BytesIO(buffer))
    return RasterPage(buffer=buffer, width=img.width, height=img.height)


def _size(buffer: bytes) -> tuple[int, int]:
    return Image.open(BytesIO(buffer)).size


# ==========================================
# Raster conversion
# ==========================================

class TestRasterConverter:
    def test_png_is_normalized(self, tmp_path):
        page = RasterConverter(output_dir=tmp_path, save_pages=True).convert(make_png(400, 600), "sheet.png")
        assert (page.width, page.height) == (400, 600)
        assert page.path is not None and page.path.startswith(str(tmp_path))
        assert page.to_image().mode == "RGB"

    def test_page_not_written_by_default(self, tmp_path):
        page = RasterConverter(output_dir=tmp_path).convert(make_png(400, 600), "sheet.png")
        assert page.path is None
        assert list(tmp_path.iterdir()) == []

    def test_pdf_first_page_rendered_at_dpi(self, tmp_path):
        doc = fitz.open()
        doc.new_page(width=595, height=842)
        doc.new_page(width=200, height=200)
        content = doc.tobytes()
        doc.close()

        page = RasterConverter(dpi=144, output_dir=tmp_path).convert(content, "exam.pdf")
        assert (page.width, page.height) == (1190, 1684)

    def test_empty_document_rejected(self, tmp_path):
        with pytest.raises(DocumentConversionError):
            RasterConverter(output_dir=tmp_path).convert(b"", "empty.pdf")

    def test_corrupt_document_rejected(self, tmp_path):
        with pytest.raises(DocumentConversionError):
            RasterConverter(output_dir=tmp_path).convert(b"not an image at all", "junk.png")

    def test_broken_pdf_rejected(self, tmp_path):
        with pytest.raises(DocumentConversionError):
            RasterConverter(output_dir=tmp_path).convert(b"%PDF-1.4 truncated", "broken.pdf")


# ==========================================
# Marker detection
# ==========================================

class TestMarkerDetector:
    def test_disabled_detector_reports_reason(self):
        result = MarkerDetector(enabled=False).detect(_page(make_marked_png()))
        assert result == MarkerDetection(success=False, corners=None, reason="detector_disabled")

    def test_finds_four_corner_marks(self):
        result = MarkerDetector(enabled=True).detect(_page(make_marked_png()))
        assert result.success
        assert result.corners.top_left == pytest.approx((55, 55), abs=3)
        assert result.corners.bottom_right == pytest.approx((1185, 1699), abs=3)

    def test_blank_page_not_found(self):
        result = MarkerDetector(enabled=True).detect(_page(make_png()))
        assert not result.success
        assert result.reason == "not_found"

    def test_undecodable_page_never_raises(self):
        result = MarkerDetector(enabled=True).detect(RasterPage(buffer=b"garbage", width=10, height=10))
        assert not result.success
        assert result.reason in ("detection_error", "not_found")


# ==========================================
# Region extraction
# ==========================================

NO_MARKERS = MarkerDetection.failed("detector_disabled")


class TestTemplateRegion:
    def test_box_scaled_to_page(self):
        crop = TemplateRegionStrategy().crop(_page(make_png(1654 * 2, 2339 * 2)), NO_MARKERS)
        assert crop.method == "template"
        assert crop.box == Box(976, 3172, 1354, 226)
        assert _size(crop.buffer) == (1354, 226)

    @pytest.mark.parametrize("size", [(1, 1), (3, 2000), (2000, 3), (50, 50), (827, 1170)])
    def test_fallback_crop_never_empty(self, size):
        crop = TemplateRegionStrategy().crop(_page(make_png(*size)), NO_MARKERS)
        w, h = _size(crop.buffer)
        assert w >= 1 and h >= 1
        assert crop.box.x + crop.box.w <= size[0]
        assert crop.box.y + crop.box.h <= size[1]

    def test_clip_keeps_origin_inside(self):
        assert clip_box(Box(900, 900, 500, 500), 1000, 950) == Box(900, 900, 100, 50)
        assert clip_box(Box(5000, 5000, 10, 10), 100, 100) == Box(99, 99, 1, 1)

    def test_zero_area_image_out_of_bounds(self):
        with pytest.raises(RegionOutOfBoundsError):
            clip_box(Box(0, 0, 10, 10), 0, 100)


class TestPerspectiveRegion:
    def test_warp_crops_fixed_canvas_box(self):
        page = _page(make_marked_png())
        markers = MarkerDetector(enabled=True).detect(page)
        crop = PerspectiveRegionStrategy().crop(page, markers)
        assert crop.method == "markers"
        assert _size(crop.buffer) == (677, 113)

    def test_extractor_prefers_warp_when_enabled(self):
        page = _page(make_marked_png())
        markers = MarkerDetector(enabled=True).detect(page)
        crop = RegionExtractor(perspective_enabled=True, save_debug_crops=False).extract(page, markers)
        assert crop.method == "markers"

    def test_extractor_uses_template_when_disabled(self):
        page = _page(make_marked_png())
        markers = MarkerDetector(enabled=True).detect(page)
        crop = RegionExtractor(perspective_enabled=False, save_debug_crops=False).extract(page, markers)
        assert crop.method == "template"

    def test_warp_failure_falls_back_to_template(self):
        class BrokenWarp(RegionStrategy):
            method = "markers"

            def supports(self, markers):
                return True

            def crop(self, page, markers):
                raise RuntimeError("singular matrix")

        page = _page(make_png(827, 1170))
        markers = MarkerDetection(
            success=True,
            corners=FourPoints((0, 0), (0, 0), (0, 0), (0, 0)),
        )
        crop = RegionExtractor(
            perspective_enabled=True,
            perspective=BrokenWarp(),
            save_debug_crops=False,
        ).extract(page, markers)
        assert crop.method == "template"

    def test_strategy_base_is_abstract(self):
        with pytest.raises(TypeError):
            RegionStrategy()

    def test_both_paths_failing_raises(self):
        page = RasterPage(buffer=b"garbage", width=1, height=1)
        with pytest.raises(RegionExtractionError):
            RegionExtractor(perspective_enabled=False, save_debug_crops=False).extract(page, NO_MARKERS)

    def test_debug_crop_written(self, tmp_path):
        page = _page(make_png(827, 1170))
        crop = RegionExtractor(
            perspective_enabled=False,
            save_debug_crops=True,
            output_dir=tmp_path,
        ).extract(page, NO_MARKERS)
        assert crop.path is not None
        assert (tmp_path / crop.path.split("/")[-1]).exists()


# ==========================================
# Student identification
# ==========================================

class TestStudentIdentifier:
    def test_filename_wins_without_vision_calls(self):
        reader = FakeVisionReader(page_text="99999999")
        identifier = StudentIdentifier(reader, digit_boxes=[{"x": 0, "y": 0, "w": 5, "h": 5}] * 7)
        assert identifier.identify("20231234.pdf", _page(make_png())) == "20231234"
        assert reader.calls == []

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("20231234.pdf", "20231234"),
            ("scan 2019123456 final.png", "2019123456"),
            ("midterm_page.jpg", None),
            ("12345.pdf", None),
            (None, None),
        ],
    )
    def test_filename_pattern(self, name, expected):
        assert student_number_from_filename(name) == expected

    def test_digit_boxes(self):
        reader = FakeVisionReader(digits=[2, 0, 2, 3, 4, 5, 6, 7])
        boxes = [{"x_percent": 10 + i * 5, "y_percent": 5, "w_percent": 4, "h_percent": 3} for i in range(8)]
        identifier = StudentIdentifier(reader, digit_boxes=boxes)
        assert identifier.identify("scan.png", _page(make_png())) == "20234567"
        assert reader.calls == ["number"] * 8

    def test_digit_box_outside_page_falls_through_to_ocr(self):
        reader = FakeVisionReader(page_text="Student No: 2019123456")
        boxes = [{"x": 10, "y": 10, "w": 20, "h": 20}] * 6 + [{"x": 5000, "y": 10, "w": 20, "h": 20}]
        identifier = StudentIdentifier(reader, digit_boxes=boxes)
        assert identifier.identify("scan.png", _page(make_png())) == "2019123456"
        assert reader.calls == ["text"]

    def test_too_few_digits_rejected(self):
        reader = FakeVisionReader(digits=[1, 2, 3], page_text="EMPTY")
        boxes = [{"x": 10 + i * 30, "y": 10, "w": 20, "h": 20} for i in range(3)]
        identifier = StudentIdentifier(reader, digit_boxes=boxes)
        assert identifier.identify("scan.png", _page(make_png())) is None

    def test_nothing_found(self):
        identifier = StudentIdentifier(FakeVisionReader(page_text=None), digit_boxes=[])
        assert identifier.identify("scan.png", _page(make_png())) is None

    def test_resolve_percentage_box(self):
        box = {"x_percent": 10, "y_percent": 50, "w_percent": 5, "h_percent": 2}
        assert resolve_box(box, 1000, 2000) == (100, 1000, 50, 40)


# ==========================================
# Vision parsing
# ==========================================

class TestVisionParsing:
    @pytest.mark.parametrize(
        "text,expected",
        [("85", 85), (" 7 ", 7), ("Score: 92 points", 92), ("", 0), ("EMPTY", 0), (None, 0), ("0", 0)],
    )
    def test_parse_number(self, text, expected):
        assert parse_number(text) == expected

    def test_parse_number_rejects_text(self):
        with pytest.raises(VisionExtractionError, match="Invalid score value detected."):
            parse_number("no digits here")

    @pytest.mark.parametrize("text", ["-5", "7.5", "+3", "7,5", "Score: -12"])
    def test_parse_number_rejects_signed_and_fractional(self, text):
        with pytest.raises(VisionExtractionError, match="Invalid score value detected."):
            parse_number(text)

    def test_parse_text(self):
        assert parse_text("EMPTY") is None
        assert parse_text("  ") is None
        assert parse_text(" 20231234 ") == "20231234"

    def test_missing_api_key(self):
        with pytest.raises(VisionConfigurationError):
            GeminiVisionReader(api_key=None).extract_number(make_png(10, 10))

    def test_reader_base_is_abstract(self):
        with pytest.raises(TypeError):
            VisionScoreReader()


class _Response:
    def __init__(self, text: str | None = None, error: Exception | None = None):
        self._text = text
        self._error = error

    @property
    def text(self):
        if self._error is not None:
            raise self._error
        return self._text


@pytest.fixture
def gemini(monkeypatch):
    """Replaces the Gemini client; replies maps model name to a response or an exception."""
    state = {"replies": {}, "tried": [], "configured": [], "requests": []}

    class FakeModel:
        def __init__(self, name):
            self.name = name

        def generate_content(self, parts, request_options=None):
            state["tried"].append(self.name)
            state["requests"].append((parts, request_options))
            reply = state["replies"][self.name]
            if isinstance(reply, Exception):
                raise reply
            return reply

    monkeypatch.setattr(vision.genai, "configure", lambda **kwargs: state["configured"].append(kwargs))
    monkeypatch.setattr(vision.genai, "GenerativeModel", FakeModel)
    return state


class TestGeminiVisionReader:
    def test_unavailable_model_falls_through_in_order(self, gemini):
        gemini["replies"] = {
            "m1": google_exceptions.NotFound("model retired"),
            "m2": _Response("85"),
            "m3": _Response("10"),
        }
        reader = GeminiVisionReader(api_key="key", models=["m1", "m2", "m3"], timeout=12)

        assert reader.extract_number(b"png") == 85
        assert gemini["tried"] == ["m1", "m2"]
        assert reader._active_model == "m2"

        parts, options = gemini["requests"][-1]
        assert parts[0] == NUMBER_PROMPT
        assert parts[1] == {"mime_type": "image/png", "data": b"png"}
        assert options == {"timeout": 12}

        # The working model is tried first from then on
        assert reader.extract_number(b"png") == 85
        assert gemini["tried"] == ["m1", "m2", "m2"]
        assert gemini["configured"] == [{"api_key": "key"}]

    @pytest.mark.parametrize(
        "error",
        [google_exceptions.ResourceExhausted("quota"), RuntimeError("connection reset")],
    )
    def test_other_api_errors_are_wrapped(self, gemini, error):
        gemini["replies"] = {"m1": error, "m2": _Response("85")}
        reader = GeminiVisionReader(api_key="key", models=["m1", "m2"])

        with pytest.raises(VisionExtractionError, match="Gemini Vision API error"):
            reader.extract_number(b"png")
        assert gemini["tried"] == ["m1"]

    def test_blocked_response_fails(self, gemini):
        gemini["replies"] = {"m1": _Response(error=ValueError("response was blocked"))}
        reader = GeminiVisionReader(api_key="key", models=["m1"])

        with pytest.raises(VisionExtractionError, match="Gemini returned no text"):
            reader.extract_text(b"png", "prompt")

    def test_no_model_available(self, gemini):
        gemini["replies"] = {name: google_exceptions.NotFound("gone") for name in ("m1", "m2")}
        reader = GeminiVisionReader(api_key="key", models=["m1", "m2"])

        with pytest.raises(VisionExtractionError, match="None of the Gemini models are available"):
            reader.extract_number(b"png")
        assert gemini["tried"] == ["m1", "m2"]
        assert reader._active_model is None

    def test_empty_reply_reads_as_zero(self, gemini):
        gemini["replies"] = {"m1": _Response(" EMPTY ")}
        reader = GeminiVisionReader(api_key="key", models=["m1"])
        assert reader.extract_number(b"png") == 0
