"""
Data Models
Documents, processing jobs and pages, plus the request/option types that
flow through the pipeline.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, List, Any

from .errors import ValidationError

DEFAULT_LANGUAGE = "eng"
DEFAULT_THRESHOLD = 128


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string"""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def new_job_id() -> str:
    return str(uuid.uuid4())


def compute_progress(processed_pages: int, total_pages: int) -> int:
    """Integer percentage of processed pages, 0 until the page count is known"""
    if total_pages <= 0:
        return 0
    return int(round(100 * processed_pages / total_pages))


class DocumentStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class PageStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BoundingBox:
    """Pixel rectangle of a recognized block"""
    x0: int
    y0: int
    x1: int
    y1: int
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'BoundingBox':
        return cls(
            x0=d.get('x0', 0),
            y0=d.get('y0', 0),
            x1=d.get('x1', 0),
            y1=d.get('y1', 0),
            confidence=d.get('confidence', 0.0)
        )


@dataclass
class TextBlock:
    """Recognized text fragment with its bounding box"""
    text: str
    confidence: float
    bbox: BoundingBox

    def to_dict(self) -> Dict[str, Any]:
        return {
            'text': self.text,
            'confidence': self.confidence,
            'bbox': self.bbox.to_dict()
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'TextBlock':
        return cls(
            text=d.get('text', ''),
            confidence=d.get('confidence', 0.0),
            bbox=BoundingBox.from_dict(d.get('bbox') or {})
        )


@dataclass
class Document:
    """One uploaded source file"""
    id: str
    file_hash: str
    storage_path: str
    original_name: str
    media_type: str
    size: int
    job_id: str

    status: DocumentStatus = DocumentStatus.PENDING
    total_pages: int = 0
    processed_pages: int = 0

    uploaded_at: str = ""
    processed_at: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self):
        if not self.uploaded_at:
            self.uploaded_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'fileHash': self.file_hash,
            'storagePath': self.storage_path,
            'originalName': self.original_name,
            'mediaType': self.media_type,
            'size': self.size,
            'jobId': self.job_id,
            'status': self.status.value,
            'totalPages': self.total_pages,
            'processedPages': self.processed_pages,
            'uploadedAt': self.uploaded_at,
            'processedAt': self.processed_at,
            'error': self.error,
        }


@dataclass
class Job:
    """One processing run (initial or reprocess) for a document"""
    job_id: str
    document_id: str

    status: JobStatus = JobStatus.WAITING
    progress: int = 0
    total_pages: int = 0
    processed_pages: int = 0

    created_at: str = ""
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self):
        if not self.created_at:
            self.created_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'jobId': self.job_id,
            'documentId': self.document_id,
            'status': self.status.value,
            'progress': self.progress,
            'totalPages': self.total_pages,
            'processedPages': self.processed_pages,
            'createdAt': self.created_at,
            'startedAt': self.started_at,
            'completedAt': self.completed_at,
            'error': self.error,
        }


@dataclass
class Page:
    """One page of a document and its extracted text"""
    id: str
    document_id: str
    page_number: int

    text: Optional[str] = None
    confidence: float = 0.0
    text_blocks: List[TextBlock] = field(default_factory=list)
    status: PageStatus = PageStatus.PENDING

    processed_at: Optional[str] = None
    error: Optional[str] = None
    image_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'documentId': self.document_id,
            'pageNumber': self.page_number,
            'text': self.text,
            'confidence': self.confidence,
            'textBlocks': [b.to_dict() for b in self.text_blocks],
            'status': self.status.value,
            'processedAt': self.processed_at,
            'error': self.error,
            'imagePath': self.image_path,
        }


@dataclass
class PreprocessOptions:
    """
    Image preprocessing switches.

    Stages always run in the order rotate -> binarize -> denoise -> deskew,
    skipping the disabled ones.

    Attributes:
        rotate: Clockwise rotation in degrees (None or 0 disables)
        binarize: Grayscale + global threshold
        threshold: Binarization threshold (0-255)
        denoise: Non-local means denoising
        deskew: Detect and undo small skew angles
    """
    rotate: Optional[float] = None
    binarize: bool = True
    threshold: int = DEFAULT_THRESHOLD
    denoise: bool = False
    deskew: bool = False

    def __post_init__(self):
        try:
            self.threshold = int(self.threshold)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Binarization threshold must be an integer, got {self.threshold!r}"
            ) from e
        if not 0 <= self.threshold <= 255:
            raise ValidationError(
                f"Binarization threshold must be within 0-255, got {self.threshold}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> 'PreprocessOptions':
        """Create from a request dict, ignoring unknown keys"""
        if not d:
            return cls()
        valid_keys = set(cls.__annotations__.keys())
        filtered = {k: v for k, v in d.items() if k in valid_keys}
        # Falsy threshold falls back to the default like the request contract
        if not filtered.get('threshold'):
            filtered.pop('threshold', None)
        return cls(**filtered)


@dataclass
class ProcessingRequest:
    """
    Unit of work handed to the dispatch queue.

    With page_id set only that page of the document is processed again.
    """
    document_id: str
    source_path: str
    job_id: str
    language: str = DEFAULT_LANGUAGE
    preprocess: PreprocessOptions = field(default_factory=PreprocessOptions)
    page_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'documentId': self.document_id,
            'sourcePath': self.source_path,
            'jobId': self.job_id,
            'language': self.language,
            'preprocess': self.preprocess.to_dict(),
            'pageId': self.page_id,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ProcessingRequest':
        missing = [k for k in ('documentId', 'sourcePath', 'jobId') if not d.get(k)]
        if missing:
            raise ValidationError(f"Processing request missing: {', '.join(missing)}")
        return cls(
            document_id=d['documentId'],
            source_path=d['sourcePath'],
            job_id=d['jobId'],
            language=d.get('language') or DEFAULT_LANGUAGE,
            preprocess=PreprocessOptions.from_dict(d.get('preprocess')),
            page_id=d.get('pageId')
        )
