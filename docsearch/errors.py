"""
Exceptions for the document processing pipeline and search engine
"""


class DocSearchError(Exception):
    """Base exception for all docsearch errors"""
    pass


class PipelineError(DocSearchError):
    """Fatal for a job: the document cannot be processed at all"""
    pass


class RasterizationError(PipelineError):
    """Raised when a source cannot be opened or split into page images"""
    pass


class PageProcessingError(DocSearchError):
    """Raised when a single page fails preprocessing or recognition"""

    def __init__(self, message: str, page_number: int = None):
        super().__init__(message)
        self.page_number = page_number


class ValidationError(DocSearchError):
    """Rejected input, surfaced to the caller before any pipeline work"""
    pass


class NotFoundError(ValidationError):
    """Unknown document, job or page identifier"""
    pass


class DocumentNotFoundError(NotFoundError, PipelineError):
    """Document missing (fatal inside a job, a rejection outside of one)"""

    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class PageNotFoundError(NotFoundError, PipelineError):
    """Page missing when a job goes to reprocess it"""

    def __init__(self, page_id: str):
        super().__init__(f"Page not found: {page_id}")
        self.page_id = page_id


class DocumentBusyError(ValidationError):
    """A job currently holds the document lease"""

    def __init__(self, document_id: str, holder: str):
        super().__init__(
            f"Document {document_id} is being processed by job {holder}"
        )
        self.document_id = document_id
        self.holder = holder
