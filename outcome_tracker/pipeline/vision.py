"""Vision model reader for handwritten numbers and page text."""

import logging
import re
import threading
from abc import ABC, abstractmethod

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from outcome_tracker.core.config import settings
from outcome_tracker.core.exceptions import (
    VisionConfigurationError,
    VisionExtractionError,
)

logger = logging.getLogger(__name__)

NUMBER_PROMPT = (
    "Extract the numeric value inside this box. Only return a single number. "
    "If empty, return 0. Do not include any explanation or text, only the number."
)
STUDENT_ID_PROMPT = (
    "Extract ONLY the student ID number from this exam paper. "
    "Return just the digits without spaces or text. If not found, return EMPTY."
)

# Signed and decimal tokens are matched so they can be rejected whole
_NUMBER = re.compile(r"[-+]?\d+(?:[.,]\d+)?")


def parse_number(text: str | None) -> int:
    """Turn a model reply into an integer score.

    Blank and "empty" replies mean an empty box (0). Otherwise the first number
    in the reply is used and must be a non-negative integer; a reply with no
    number, a sign or a fraction is rejected.
    """
    text = (text or "").strip()
    if not text or text.lower() == "empty":
        return 0
    match = _NUMBER.search(text)
    if not match or not match.group(0).isdigit():
        raise VisionExtractionError("Invalid score value detected.")
    return int(match.group(0))


def parse_text(text: str | None) -> str | None:
    text = (text or "").strip()
    if not text or text.lower() == "empty":
        return None
    return text


class VisionScoreReader(ABC):
    """Reads numbers and text from PNG images."""

    def extract_number(self, image: bytes) -> int:
        return parse_number(self.extract_text(image, NUMBER_PROMPT))

    @abstractmethod
    def extract_text(self, image: bytes, prompt: str) -> str | None:
        """Model reply for the prompt, or None when the reply is blank or EMPTY."""
        pass


# Bounds in-flight calls across all readers in the process
_vision_slots = threading.BoundedSemaphore(settings.VISION_MAX_CONCURRENCY)


class GeminiVisionReader(VisionScoreReader):
    """Gemini implementation backed by google-generativeai."""

    def __init__(
        self,
        api_key: str | None = None,
        models: list[str] | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key or settings.GEMINI_API_KEY
        self.models = models or list(settings.GEMINI_MODELS)
        self.timeout = timeout or settings.VISION_TIMEOUT_SECONDS
        self._configured = False
        self._active_model: str | None = None

    def _configure(self) -> None:
        if not self.api_key:
            raise VisionConfigurationError("GEMINI_API_KEY is not configured")
        if not self._configured:
            genai.configure(api_key=self.api_key)
            self._configured = True

    def _candidate_models(self) -> list[str]:
        if self._active_model:
            return [self._active_model] + [m for m in self.models if m != self._active_model]
        return self.models

    def extract_text(self, image: bytes, prompt: str) -> str | None:
        self._configure()
        parts = [prompt, {"mime_type": "image/png", "data": image}]

        with _vision_slots:
            for model_name in self._candidate_models():
                try:
                    model = genai.GenerativeModel(model_name)
                    response = model.generate_content(
                        parts,
                        request_options={"timeout": self.timeout},
                    )
                except google_exceptions.NotFound as e:
                    logger.warning(f"[VISION] Model {model_name} not available: {e}")
                    continue
                except Exception as e:
                    raise VisionExtractionError(f"Gemini Vision API error: {e}")

                self._active_model = model_name
                try:
                    text = response.text
                except ValueError as e:
                    # Blocked or empty candidates
                    raise VisionExtractionError(f"Gemini returned no text: {e}")
                logger.debug(f"[VISION] {model_name} -> {text!r}")
                return parse_text(text)

        raise VisionExtractionError(
            f"None of the Gemini models are available. Tried: {', '.join(self.models)}"
        )
