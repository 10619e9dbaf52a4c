"""OCR Engine Implementations"""

from .tesseract_engine import TesseractRecognizer, build_text_blocks

__all__ = ['TesseractRecognizer', 'build_text_blocks']
