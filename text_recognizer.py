"""
OCR text recognition for video frames and subtitle images.
"""

from typing import List, Optional, Set

import numpy as np
import pytesseract
from PIL import Image

OCR_ENGINES = ("easyocr", "tesseract")


class TextRecognizer:
    """
    Reads text lines out of an image.

    Wraps EasyOCR (better on stylized credits) or Tesseract. The returned
    lines carry no confidence; callers treat them all alike.
    """

    def __init__(self, engine: str = "easyocr", languages: Optional[List[str]] = None, use_gpu: bool = False):
        if engine not in OCR_ENGINES:
            raise ValueError(f"Unknown OCR engine '{engine}' (choose from {', '.join(OCR_ENGINES)})")
        self.engine = engine
        self.languages = languages or ["en"]
        self.use_gpu = use_gpu
        self._reader = None

    @property
    def reader(self):
        # Loading the EasyOCR model is slow; only do it once, on first use
        if self._reader is None:
            import easyocr
            self._reader = easyocr.Reader(self.languages, gpu=self.use_gpu, verbose=False)
        return self._reader

    def recognize(self, image: Image.Image) -> Set[str]:
        """
        Run OCR on an image.

        Returns:
            Set of non-empty, stripped text lines
        """
        if self.engine == "easyocr":
            img_array = np.array(image.convert("RGB"))
            results = self.reader.readtext(img_array, paragraph=False)
            texts = [text for _, text, _ in results]
        else:
            lang = "+".join(_tesseract_language(code) for code in self.languages)
            texts = pytesseract.image_to_string(image, lang=lang).splitlines()

        return {text.strip() for text in texts if text.strip()}


def _tesseract_language(code: str) -> str:
    # EasyOCR takes ISO 639-1 codes, Tesseract wants its own names
    return {"en": "eng", "de": "deu", "fr": "fra", "es": "spa"}.get(code, code)
