"""
OCR Package
Recognition engine contract, preprocessing chain and per-page processing
"""

from .base import TextRecognizer, RecognitionResult, OCRConfig

__all__ = [
    'TextRecognizer',
    'RecognitionResult',
    'OCRConfig',
    'ImagePreprocessor',
    'PageProcessor',
    'TesseractRecognizer',
]


# Lazy imports so the base contract can be used without pulling in
# OpenCV or pytesseract
def __getattr__(name):
    if name == "ImagePreprocessor":
        from .image_preprocessor import ImagePreprocessor
        return ImagePreprocessor
    if name == "PageProcessor":
        from .page_processor import PageProcessor
        return PageProcessor
    if name == "TesseractRecognizer":
        from .engines.tesseract_engine import TesseractRecognizer
        return TesseractRecognizer
    raise AttributeError(f"module 'docsearch.ocr' has no attribute '{name}'")
