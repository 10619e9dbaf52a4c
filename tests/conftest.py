"""
Shared fixtures for the docsearch test suite

Provides:
- FakeRecognizer: scripted TextRecognizer (no tesseract needed)
- Temporary store, settings and application wiring
- Synthetic PDFs (PyMuPDF), page images (numpy/OpenCV) and text files
"""

import sys
from pathlib import Path
from typing import List, Optional

import cv2
import fitz  # PyMuPDF
import numpy as np
import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from docsearch.config import PipelineSettings
from docsearch.events import InMemoryPubSub
from docsearch.models import BoundingBox, TextBlock
from docsearch.ocr.base import TextRecognizer, RecognitionResult
from docsearch.store import DocumentStore


EXAMPLE_TEXT = "Machine learning algorithms process data efficiently."


class FakeRecognizer(TextRecognizer):
    """
    Recognizer returning scripted results in call order.

    Each entry of `responses` is either a string (recognized text) or an
    Exception instance (raised). Once exhausted, `default_text` is returned.
    """

    def __init__(self, responses: Optional[List] = None,
                 default_text: str = "recognized page text",
                 confidence: float = 88.0):
        super().__init__()
        self.responses = list(responses or [])
        self.default_text = default_text
        self.confidence = confidence
        self.calls = []

    def initialize(self) -> None:
        self._initialized = True

    def recognize(self, image: np.ndarray, language: Optional[str] = None) -> RecognitionResult:
        self.calls.append({'shape': image.shape, 'language': language})
        response = self.responses.pop(0) if self.responses else self.default_text
        if isinstance(response, Exception):
            raise response

        block = TextBlock(
            text=response,
            confidence=self.confidence,
            bbox=BoundingBox(0, 0, image.shape[1], image.shape[0], self.confidence)
        )
        return RecognitionResult(text=response, confidence=self.confidence, text_blocks=[block])


def make_pdf(path: Path, page_texts: List[str]) -> Path:
    """Write a PDF with one page per text"""
    doc = fitz.open()
    for text in page_texts:
        page = doc.new_page(width=300, height=200)
        page.insert_text((20, 40), text)
    doc.save(str(path))
    doc.close()
    return path


def make_page_image(path: Path, width: int = 200, height: int = 100) -> Path:
    """Write a white PNG with a dark bar across the middle"""
    image = np.full((height, width, 3), 255, dtype=np.uint8)
    image[height // 2 - 5:height // 2 + 5, 20:width - 20] = 30
    cv2.imwrite(str(path), image)
    return path


@pytest.fixture
def fake_recognizer():
    return FakeRecognizer()


@pytest.fixture
def store(tmp_path):
    return DocumentStore(tmp_path / "db" / "docsearch.db")


@pytest.fixture
def pubsub():
    return InMemoryPubSub()


@pytest.fixture
def settings(tmp_path):
    return PipelineSettings(
        data_dir=str(tmp_path / "data"),
        worker_concurrency=2,
        rasterize_dpi=40
    )


@pytest.fixture
def sample_text_file(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text(EXAMPLE_TEXT, encoding="utf-8")
    return path


@pytest.fixture
def sample_pdf(tmp_path):
    return make_pdf(tmp_path / "report.pdf", ["First page", "Second page", "Third page"])


@pytest.fixture
def sample_image(tmp_path):
    return make_page_image(tmp_path / "scan.png")


@pytest.fixture
def app(settings, pubsub, fake_recognizer):
    """Fully wired application with running workers"""
    from main import build_application

    application = build_application(settings, broadcaster=pubsub, recognizer=fake_recognizer)
    application.start()
    yield application
    application.shutdown(wait=True, timeout=10)


@pytest.fixture
def pdf_factory():
    """make_pdf(path, page_texts) for tests needing custom PDFs"""
    return make_pdf


@pytest.fixture
def recognizer_factory():
    """FakeRecognizer class for tests needing scripted responses"""
    return FakeRecognizer
