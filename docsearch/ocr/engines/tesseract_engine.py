"""
Tesseract OCR Engine Implementation
CPU-only recognizer returning text, per-block bounding boxes and confidence
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from PIL import Image

from ..base import TextRecognizer, RecognitionResult, OCRConfig
from ...models import BoundingBox, TextBlock

logger = logging.getLogger(__name__)


def _to_pil(image: np.ndarray) -> Image.Image:
    """Convert a numpy image (grayscale, RGB or RGBA) to PIL"""
    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    return Image.fromarray(image)


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def build_text_blocks(data: Dict[str, List[Any]]) -> Tuple[str, float, List[TextBlock]]:
    """
    Group pytesseract word-level output into text blocks.

    Words are grouped into blocks by block_num and into lines by
    (block_num, par_num, line_num). Entries with negative confidence are
    layout rows (page/block/line headers) and carry no text.

    Args:
        data: Output of pytesseract.image_to_data(..., output_type=Output.DICT)

    Returns:
        Tuple of (full text, mean word confidence 0-100, text blocks)
    """
    blocks: Dict[int, Dict[str, Any]] = {}
    all_confidences: List[float] = []

    for i, word in enumerate(data.get('text', [])):
        word = (word or '').strip()
        conf = float(data['conf'][i])
        if not word or conf < 0:
            continue

        block_num = int(data['block_num'][i])
        line_key = (int(data['par_num'][i]), int(data['line_num'][i]))
        left, top = int(data['left'][i]), int(data['top'][i])
        right, bottom = left + int(data['width'][i]), top + int(data['height'][i])

        block = blocks.setdefault(block_num, {
            'lines': {}, 'confidences': [],
            'x0': left, 'y0': top, 'x1': right, 'y1': bottom,
        })
        block['lines'].setdefault(line_key, []).append(word)
        block['confidences'].append(conf)
        block['x0'] = min(block['x0'], left)
        block['y0'] = min(block['y0'], top)
        block['x1'] = max(block['x1'], right)
        block['y1'] = max(block['y1'], bottom)
        all_confidences.append(conf)

    text_blocks = []
    for block_num in sorted(blocks):
        block = blocks[block_num]
        lines = [' '.join(words) for _, words in sorted(block['lines'].items())]
        text = '\n'.join(lines).strip()
        if not text:
            continue
        confidence = _mean(block['confidences'])
        text_blocks.append(TextBlock(
            text=text,
            confidence=confidence,
            bbox=BoundingBox(
                x0=block['x0'], y0=block['y0'],
                x1=block['x1'], y1=block['y1'],
                confidence=confidence
            )
        ))

    full_text = '\n\n'.join(b.text for b in text_blocks)
    return full_text, _mean(all_confidences), text_blocks


class TesseractRecognizer(TextRecognizer):
    """Tesseract OCR implementation (CPU-only, lightweight)"""

    def __init__(self, config: Optional[OCRConfig] = None):
        super().__init__(config)
        self.tesseract_version = None

    def initialize(self) -> None:
        """Point pytesseract at the configured executable and verify it runs"""
        if self._initialized:
            logger.warning("Tesseract already initialized")
            return

        try:
            import pytesseract
        except ImportError as e:
            logger.error(f"pytesseract not installed: {e}")
            raise RuntimeError(
                "pytesseract is not installed. "
                "Install with: pip install pytesseract"
            ) from e

        if self.config.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.config.tesseract_cmd
            logger.info(f"Using Tesseract executable: {self.config.tesseract_cmd}")
        else:
            logger.info("Using system Tesseract executable")

        try:
            self.tesseract_version = pytesseract.get_tesseract_version()
        except Exception as e:
            logger.error(f"Tesseract executable test failed: {e}")
            raise RuntimeError(f"Tesseract executable not working: {e}") from e

        self._initialized = True
        logger.info(f"Tesseract engine initialized (version {self.tesseract_version})")

    def recognize(self, image: np.ndarray, language: Optional[str] = None) -> RecognitionResult:
        """
        Recognize one page image with Tesseract.

        Args:
            image: Image as numpy array (grayscale or RGB)
            language: Tesseract language code(s), e.g. "eng" or "eng+deu"

        Returns:
            RecognitionResult with block-level text and bounding boxes
        """
        if not self._initialized:
            self.initialize()

        import pytesseract

        start_time = time.time()
        lang = language or self.config.language
        custom_config = f'--oem {self.config.oem} --psm {self.config.psm}'

        data = pytesseract.image_to_data(
            _to_pil(image),
            lang=lang,
            config=custom_config,
            output_type=pytesseract.Output.DICT
        )

        text, confidence, blocks = build_text_blocks(data)
        processing_time = time.time() - start_time

        if self.config.verbose:
            logger.debug(
                f"Tesseract recognized {len(blocks)} blocks "
                f"(conf {confidence:.1f}) in {processing_time:.2f}s"
            )

        return RecognitionResult(
            text=text,
            confidence=confidence,
            text_blocks=blocks,
            processing_time=processing_time
        )

    def cleanup(self) -> None:
        """Release Tesseract resources"""
        self._initialized = False
        logger.info("Tesseract engine cleaned up")
