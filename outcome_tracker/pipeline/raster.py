"""Exam document -> single raster page.

PDF: PyMuPDF renders the first page. Images: Pillow decodes and normalizes
to RGB PNG. The rendered page is kept in memory; it is written under
WORK_DIR/pages only when SAVE_DEBUG_PAGES is on.
"""

import logging
import uuid
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError

from outcome_tracker.core.config import settings
from outcome_tracker.core.exceptions import DocumentConversionError

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


@dataclass(frozen=True)
class RasterPage:
    """Single-page PNG raster."""

    buffer: bytes
    width: int
    height: int
    path: str | None = None

    def to_image(self) -> Image.Image:
        """Decode the buffer into an RGB Pillow image."""
        return Image.open(BytesIO(self.buffer)).convert("RGB")


def encode_png(image: Image.Image) -> bytes:
    buf = BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


class RasterConverter:
    """Converts uploaded exam documents into one PNG page."""

    def __init__(
        self,
        dpi: int | None = None,
        output_dir: str | Path | None = None,
        save_pages: bool | None = None,
    ):
        self.dpi = dpi or settings.RASTER_DPI
        self.save_pages = settings.SAVE_DEBUG_PAGES if save_pages is None else save_pages
        self.output_dir = Path(output_dir) if output_dir else Path(settings.WORK_DIR) / "pages"

    def convert(self, content: bytes, file_name: str | None = None) -> RasterPage:
        """Rasterize the first page of a PDF, or normalize an image upload."""
        if not content:
            raise DocumentConversionError(f"Empty document: {file_name or 'unknown'}")

        if content[:4] == PDF_MAGIC:
            image = self._render_pdf(content, file_name)
        else:
            image = self._decode_image(content, file_name)

        if image.width <= 0 or image.height <= 0:
            raise DocumentConversionError(f"Document has no drawable area: {file_name or 'unknown'}")

        buffer = encode_png(image)
        path = self._save(buffer) if self.save_pages else None
        logger.debug(
            f"[RASTER] {file_name or 'document'} -> {image.width}x{image.height} ({len(buffer) // 1024} KB)"
        )
        return RasterPage(buffer=buffer, width=image.width, height=image.height, path=path)

    def _render_pdf(self, content: bytes, file_name: str | None) -> Image.Image:
        try:
            doc = fitz.open(stream=content, filetype="pdf")
        except Exception as e:
            raise DocumentConversionError(f"Invalid PDF {file_name or ''}: {e}")

        try:
            if doc.page_count < 1:
                raise DocumentConversionError(f"PDF has no pages: {file_name or 'unknown'}")
            scale = self.dpi / 72.0
            pix = doc[0].get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
            return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
        except DocumentConversionError:
            raise
        except Exception as e:
            raise DocumentConversionError(f"PDF rendering failed for {file_name or 'document'}: {e}")
        finally:
            doc.close()

    def _decode_image(self, content: bytes, file_name: str | None) -> Image.Image:
        try:
            with Image.open(BytesIO(content)) as img:
                return img.convert("RGB")
        except (UnidentifiedImageError, OSError) as e:
            raise DocumentConversionError(f"Unsupported or corrupt document {file_name or ''}: {e}")

    def _save(self, buffer: bytes) -> str | None:
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path = self.output_dir / f"page_{uuid.uuid4().hex}.png"
            path.write_bytes(buffer)
            return str(path)
        except OSError as e:
            # The in-memory buffer is enough for the pipeline
            logger.warning(f"[RASTER] Could not write page image: {e}")
            return None
