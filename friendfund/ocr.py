"""
OCR collaborators used to read payment screenshots.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from google import genai
from google.genai import types

from friendfund.errors import UpstreamDegraded

logger = logging.getLogger(__name__)

OCR_PROMPT = (
    "Transcribe all text visible in this payment screenshot exactly as shown, "
    "one line per visual line. Do not summarize or add commentary."
)
OCR_MAX_OUTPUT_TOKENS = 2000


class OcrEngine(Protocol):
    def extract_text(self, image_bytes: bytes, mime_type: str = "image/png") -> str:
        ...


class GeminiOcrEngine:
    """Extracts screenshot text with a Gemini multimodal call."""

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash"):
        if not api_key:
            raise ValueError("GEMINI_API_KEY is required for GeminiOcrEngine")
        self.api_key = api_key
        self.model = model
        self._client: Optional[genai.Client] = None

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def extract_text(self, image_bytes: bytes, mime_type: str = "image/png") -> str:
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                    OCR_PROMPT,
                ],
                config=types.GenerateContentConfig(
                    temperature=0, max_output_tokens=OCR_MAX_OUTPUT_TOKENS
                ),
            )
        except Exception as exc:
            logger.warning("Gemini OCR call failed: %s", exc)
            raise UpstreamDegraded(f"OCR engine unavailable: {exc}") from exc
        if not response.text:
            raise UpstreamDegraded("OCR engine returned no text")
        return response.text


@dataclass
class StaticOcrEngine:
    """Test double returning a fixed transcription."""

    text: str = ""

    def extract_text(self, image_bytes: bytes, mime_type: str = "image/png") -> str:
        return self.text


class UnavailableOcrEngine:
    """Used when no OCR backend is configured; every screenshot goes to review."""

    def extract_text(self, image_bytes: bytes, mime_type: str = "image/png") -> str:
        raise UpstreamDegraded("No OCR engine configured")
