"""Text recognition over screenshots (Tesseract via pytesseract)."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol

import pytesseract
from loguru import logger
from PIL import Image


class TextRecognizer(Protocol):
    def recognize(self, image_path: Path | str) -> str: ...


class TesseractRecognizer:
    def __init__(self, lang: str = "eng", tesseract_cmd: str | None = None):
        self.lang = lang
        cmd = tesseract_cmd or os.getenv("TESSERACT_CMD", "").strip()
        if cmd:
            pytesseract.pytesseract.tesseract_cmd = cmd

    def recognize(self, image_path: Path | str) -> str:
        with Image.open(image_path) as image:
            prepared = image if image.mode in {"RGB", "L"} else image.convert("RGB")
            text = pytesseract.image_to_string(prepared, lang=self.lang)
        logger.debug(f"Recognized {len(text)} characters from {Path(image_path).name}")
        return text
