"""Searchable OCR document backend"""

from .errors import (
    DocSearchError, PipelineError, RasterizationError, PageProcessingError,
    ValidationError, NotFoundError, DocumentNotFoundError, DocumentBusyError
)
from .models import (
    Document, DocumentStatus, Job, JobStatus, Page, PageStatus,
    PreprocessOptions, ProcessingRequest
)
from .store import DocumentStore
from .search import SearchEngine

__version__ = "0.1.0"

__all__ = [
    'DocSearchError', 'PipelineError', 'RasterizationError', 'PageProcessingError',
    'ValidationError', 'NotFoundError', 'DocumentNotFoundError', 'DocumentBusyError',
    'Document', 'DocumentStatus', 'Job', 'JobStatus', 'Page', 'PageStatus',
    'PreprocessOptions', 'ProcessingRequest',
    'DocumentStore', 'SearchEngine',
    'DocumentService', 'JobOrchestrator',
]


# Lazy imports to avoid loading PyMuPDF/OpenCV when only the store or
# search engine is needed
def __getattr__(name):
    if name == "DocumentService":
        from .document_service import DocumentService
        return DocumentService
    if name == "JobOrchestrator":
        from .orchestrator import JobOrchestrator
        return JobOrchestrator
    raise AttributeError(f"module 'docsearch' has no attribute '{name}'")
