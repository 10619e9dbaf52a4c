"""
Base Text Recognizer Abstract Interface
Defines the contract the pipeline expects from an OCR engine:
image in, text + text blocks with bounding boxes + confidence out
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any
import numpy as np

from ..models import TextBlock


@dataclass
class RecognitionResult:
    """Result from recognizing one page image"""
    text: str
    confidence: float  # 0-100
    text_blocks: List[TextBlock] = field(default_factory=list)
    processing_time: float = 0.0  # Processing time in seconds


@dataclass
class OCRConfig:
    """Configuration for OCR processing"""
    # Default language when a request does not name one (tesseract code)
    language: str = "eng"

    # Path to the tesseract executable, None to use PATH
    tesseract_cmd: Optional[str] = None

    # Tesseract engine / page segmentation modes
    oem: int = 3  # Default LSTM + legacy
    psm: int = 3  # Fully automatic page segmentation

    # Engine-specific settings
    engine_settings: Dict[str, Any] = field(default_factory=dict)

    # Logging
    verbose: bool = False


class TextRecognizer(ABC):
    """Abstract base class for text recognition engines"""

    def __init__(self, config: Optional[OCRConfig] = None):
        self.config = config or OCRConfig()
        self._initialized = False

    @abstractmethod
    def initialize(self) -> None:
        """
        Initialize the engine, load models, verify executables.
        Should be called before first use.
        """
        pass

    @abstractmethod
    def recognize(self, image: np.ndarray, language: Optional[str] = None) -> RecognitionResult:
        """
        Recognize text in a single image.

        Args:
            image: Image as numpy array (RGB or grayscale)
            language: Engine language code, None for the configured default

        Returns:
            RecognitionResult with text, confidence and text blocks

        Raises:
            Exception: Any engine failure; the caller treats it as page-local
        """
        pass

    def cleanup(self) -> None:
        """Release resources held by the engine"""
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        """Check if engine has been initialized"""
        return self._initialized

    def __enter__(self):
        """Context manager support"""
        if not self._initialized:
            self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager cleanup"""
        self.cleanup()
        return False
