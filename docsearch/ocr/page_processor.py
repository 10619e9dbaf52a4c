"""
Page Processor
Turns one rasterized page into text: preprocess + recognize for images,
direct decoding for plain-text sources.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Optional

import cv2
import numpy as np
from PIL import Image

from .base import TextRecognizer, RecognitionResult
from .image_preprocessor import ImagePreprocessor
from ..errors import PageProcessingError
from ..models import PreprocessOptions

logger = logging.getLogger(__name__)

# Stored for text sources whose content is empty or not valid UTF-8
EMPTY_TEXT_PLACEHOLDER = "[No extractable text content]"

TEXT_SOURCE_CONFIDENCE = 95.0
CORRECTED_CONFIDENCE = 100.0

PreprocessorFactory = Callable[[PreprocessOptions], ImagePreprocessor]


def decode_text_source(data: bytes) -> str:
    """
    Decode a plain-text page.

    Returns:
        Decoded text, or EMPTY_TEXT_PLACEHOLDER if decoding fails or the
        content is blank
    """
    try:
        text = data.decode('utf-8-sig')
    except UnicodeDecodeError as e:
        logger.warning(f"Text source is not valid UTF-8 ({e}), using placeholder")
        return EMPTY_TEXT_PLACEHOLDER

    if not text.strip():
        return EMPTY_TEXT_PLACEHOLDER
    return text


def load_image(image_path: Path) -> np.ndarray:
    """
    Load a page image as an RGB (or grayscale) numpy array.

    OpenCV is tried first; Pillow handles formats cv2 cannot decode.
    """
    image = cv2.imread(str(image_path), cv2.IMREAD_UNCHANGED)
    if image is not None:
        if len(image.shape) == 2:
            return image
        if image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

    with Image.open(image_path) as pil_image:
        if pil_image.mode not in ('L', 'RGB', 'RGBA'):
            pil_image = pil_image.convert('RGB')
        return np.array(pil_image)


class PageProcessor:
    """Runs preprocessing and recognition for a single page"""

    def __init__(
        self,
        recognizer: TextRecognizer,
        preprocessor_factory: Optional[PreprocessorFactory] = None
    ):
        """
        Args:
            recognizer: Text recognition engine
            preprocessor_factory: Builds a preprocessor for a request's options
        """
        self.recognizer = recognizer
        self.preprocessor_factory = preprocessor_factory or ImagePreprocessor

    def process(
        self,
        image_path: str,
        page_number: int,
        kind: str,
        language: str,
        preprocess: Optional[PreprocessOptions] = None
    ) -> RecognitionResult:
        """
        Extract the text of one page.

        Args:
            image_path: Rasterized page image, or the source file for text
            page_number: 1-based page number (for error reporting)
            kind: Source kind from the rasterizer (pdf, image, text)
            language: Recognition language code
            preprocess: Preprocessing options

        Returns:
            RecognitionResult with text, confidence (0-100) and text blocks

        Raises:
            PageProcessingError: If the page cannot be read or recognized
        """
        start_time = time.time()

        if kind == 'text':
            try:
                data = Path(image_path).read_bytes()
            except OSError as e:
                raise PageProcessingError(
                    f"Cannot read text source: {e}", page_number=page_number
                ) from e

            return RecognitionResult(
                text=decode_text_source(data),
                confidence=TEXT_SOURCE_CONFIDENCE,
                text_blocks=[],
                processing_time=time.time() - start_time
            )

        try:
            image = load_image(Path(image_path))
            preprocessor = self.preprocessor_factory(preprocess or PreprocessOptions())
            prepared = preprocessor.preprocess(image)
            result = self.recognizer.recognize(prepared, language)
        except PageProcessingError:
            raise
        except Exception as e:
            raise PageProcessingError(str(e), page_number=page_number) from e

        if result.text is None:
            result.text = ""
        result.processing_time = time.time() - start_time
        logger.debug(
            f"Page {page_number}: {len(result.text)} chars, "
            f"confidence {result.confidence:.1f}, {result.processing_time:.2f}s"
        )
        return result
