"""
Document Service
Caller-facing operations: upload with deduplication, reprocessing of a
whole document or a single page, manual page correction, lookups and
deletion.

Every write that starts a job takes the document lease for the new job
before enqueueing it; the orchestrator releases the lease when the job
reaches a terminal state.
"""

import logging
import math
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import PipelineSettings
from .dispatch import DispatchQueue
from .errors import DocumentBusyError, NotFoundError, ValidationError
from .hashing import hash_file
from .leases import DocumentLeaseRegistry
from .models import (
    Document, DocumentStatus, Job, Page, PageStatus, PreprocessOptions,
    ProcessingRequest, new_id, new_job_id
)
from .ocr.page_processor import CORRECTED_CONFIDENCE
from .rasterizer import guess_media_type
from .search import SearchEngine
from .store import DocumentStore

logger = logging.getLogger(__name__)

PreprocessInput = Union[PreprocessOptions, Dict[str, Any], None]


@dataclass
class UploadResult:
    document_id: str
    job_id: str
    duplicate: bool = False
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'documentId': self.document_id,
            'jobId': self.job_id,
            'duplicate': self.duplicate,
            'message': self.message,
        }


def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        'page': page,
        'limit': limit,
        'total': total,
        'pages': math.ceil(total / limit) if limit else 0,
    }


def _preprocess_options(preprocess: PreprocessInput) -> PreprocessOptions:
    if isinstance(preprocess, PreprocessOptions):
        return preprocess
    return PreprocessOptions.from_dict(preprocess)


class DocumentService:
    """Entry point for everything a client can ask of the backend"""

    def __init__(
        self,
        store: DocumentStore,
        dispatch_queue: DispatchQueue,
        search_engine: SearchEngine,
        leases: DocumentLeaseRegistry,
        settings: Optional[PipelineSettings] = None
    ):
        self.store = store
        self.dispatch_queue = dispatch_queue
        self.search_engine = search_engine
        self.leases = leases
        self.settings = settings or PipelineSettings()

        self.uploads_dir = self.settings.resolved_data_dir() / "uploads"

    # ===== Upload =====

    def upload(
        self,
        source_path: Union[str, Path],
        original_name: Optional[str] = None,
        media_type: Optional[str] = None,
        language: Optional[str] = None,
        preprocess: PreprocessInput = None
    ) -> UploadResult:
        """
        Store a file and start processing it, unless identical bytes were
        uploaded before.

        Args:
            source_path: File to upload
            original_name: Display name (defaults to the file name)
            media_type: MIME type (guessed from the name if None)
            language: Recognition language (defaults to settings)
            preprocess: Preprocessing options or request dict

        Returns:
            UploadResult; for a duplicate, the existing document and its
            current job id with duplicate=True

        Raises:
            ValidationError: If the file does not exist
        """
        path = Path(source_path)
        if not path.is_file():
            raise ValidationError(f"No file uploaded: {source_path}")

        options = _preprocess_options(preprocess)
        file_hash = hash_file(path)

        existing = self.store.find_document_by_hash(file_hash)
        if existing is not None:
            logger.info(f"Duplicate upload of {existing.id[:8]}... ({existing.original_name})")
            return UploadResult(
                document_id=existing.id,
                job_id=existing.job_id,
                duplicate=True,
                message="Document already exists"
            )

        original_name = original_name or path.name
        media_type = media_type or guess_media_type(original_name)
        document_id = new_id()
        job_id = new_job_id()

        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        storage_path = self.uploads_dir / f"{document_id}{Path(original_name).suffix.lower()}"
        shutil.copy2(path, storage_path)

        document = Document(
            id=document_id,
            file_hash=file_hash,
            storage_path=str(storage_path),
            original_name=original_name,
            media_type=media_type,
            size=storage_path.stat().st_size,
            job_id=job_id
        )

        try:
            self.store.create_document(document)
        except ValidationError:
            # Same bytes uploaded concurrently; the other upload won
            storage_path.unlink(missing_ok=True)
            existing = self.store.find_document_by_hash(file_hash)
            if existing is None:
                raise
            return UploadResult(
                document_id=existing.id,
                job_id=existing.job_id,
                duplicate=True,
                message="Document already exists"
            )

        self.store.create_job(Job(job_id=job_id, document_id=document_id))
        self._start_job(document, job_id, language, options)

        return UploadResult(
            document_id=document_id,
            job_id=job_id,
            duplicate=False,
            message="Document uploaded successfully"
        )

    # ===== Reprocess =====

    def reprocess(
        self,
        document_id: str,
        language: Optional[str] = None,
        preprocess: PreprocessInput = None
    ) -> str:
        """
        Run the pipeline again for a document with new options.

        Existing pages are deleted before the new job is queued.

        Returns:
            The new job id

        Raises:
            NotFoundError: Unknown document
            DocumentBusyError: A job for the document is still waiting or running
        """
        options = _preprocess_options(preprocess)

        document = self.store.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document not found: {document_id}")

        job_id = new_job_id()
        if not self.leases.acquire(document_id, job_id):
            raise DocumentBusyError(document_id, self.leases.holder(document_id))

        try:
            removed = self.store.delete_pages(document_id)
            self.search_engine.remove_document(document_id)

            self.store.create_job(Job(job_id=job_id, document_id=document_id))
            self.store.update_document(
                document_id,
                status=DocumentStatus.PENDING,
                processed_pages=0,
                total_pages=0,
                error=None,
                processed_at=None,
                job_id=job_id
            )
            document.job_id = job_id
            logger.info(
                f"Reprocessing {document_id[:8]}... as job {job_id} "
                f"({removed} old pages removed)"
            )
            self._start_job(document, job_id, language, options)
        except Exception:
            self.leases.release(document_id, job_id)
            raise

        return job_id

    def reprocess_page(
        self,
        page_id: str,
        language: Optional[str] = None,
        preprocess: PreprocessInput = None
    ) -> str:
        """
        Run recognition again for one page, keeping its id and page number.

        The page goes back to pending and leaves the search index until the
        new job finishes. The document's current job id is not changed.

        Returns:
            The new job id

        Raises:
            NotFoundError: Unknown page
            DocumentBusyError: A job for the document is still waiting or running
        """
        options = _preprocess_options(preprocess)

        page = self.get_page(page_id)
        document = self.get_document(page.document_id)

        job_id = new_job_id()
        if not self.leases.acquire(document.id, job_id):
            raise DocumentBusyError(document.id, self.leases.holder(document.id))

        try:
            self.store.update_page(
                page_id, status=PageStatus.PENDING, error=None, processed_at=None
            )
            self.search_engine.remove_page(page_id)
            self.store.create_job(Job(job_id=job_id, document_id=document.id, total_pages=1))
            logger.info(
                f"Reprocessing page {page.page_number} of {document.id[:8]}... as job {job_id}"
            )
            self._start_job(document, job_id, language, options, page_id=page_id)
        except Exception:
            self.leases.release(document.id, job_id)
            raise

        return job_id

    def _start_job(
        self,
        document: Document,
        job_id: str,
        language: Optional[str],
        options: PreprocessOptions,
        page_id: Optional[str] = None
    ) -> None:
        self.leases.acquire(document.id, job_id)
        request = ProcessingRequest(
            document_id=document.id,
            source_path=document.storage_path,
            job_id=job_id,
            language=language or self.settings.default_language,
            preprocess=options,
            page_id=page_id
        )
        try:
            self.dispatch_queue.enqueue(request)
        except Exception:
            self.leases.release(document.id, job_id)
            raise

    # ===== Correction =====

    def correct_page(self, page_id: str, text: str) -> Page:
        """
        Replace a page's text with human-verified text.

        Confidence becomes 100 and the page status is left unchanged.

        Raises:
            ValidationError: Empty text
            NotFoundError: Unknown page
        """
        if text is None or not str(text).strip():
            raise ValidationError("Corrected text must not be empty")

        page = self.store.get_page(page_id)
        if page is None:
            raise NotFoundError(f"Page not found: {page_id}")

        self.store.update_page(page_id, text=text, confidence=CORRECTED_CONFIDENCE)
        page.text = text
        page.confidence = CORRECTED_CONFIDENCE

        document = self.store.get_document(page.document_id)
        self.search_engine.index_page(page, document.original_name if document else "")

        logger.info(f"Corrected page {page.page_number} of {page.document_id[:8]}...")
        return page

    # ===== Lookups =====

    def get_job_status(self, job_id: str) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: Unknown job
        """
        job = self.store.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")

        document = self.store.get_document(job.document_id)
        return {
            'jobId': job.job_id,
            'status': job.status.value,
            'progress': job.progress,
            'totalPages': job.total_pages,
            'processedPages': job.processed_pages,
            'document': document.to_dict() if document else None,
            'createdAt': job.created_at,
            'completedAt': job.completed_at,
            'error': job.error,
        }

    def list_documents(self, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        """Completed documents, newest upload first"""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be at least 1")

        documents = self.store.list_documents(
            status=DocumentStatus.COMPLETED, offset=(page - 1) * limit, limit=limit
        )
        total = self.store.count_documents(DocumentStatus.COMPLETED)
        return {
            'documents': [d.to_dict() for d in documents],
            'pagination': _pagination(page, limit, total),
        }

    def get_document(self, document_id: str) -> Document:
        document = self.store.get_document(document_id)
        if document is None:
            raise NotFoundError(f"Document not found: {document_id}")
        return document

    def get_document_pages(self, document_id: str) -> List[Page]:
        """Completed pages of a document in page order"""
        self.get_document(document_id)
        return self.store.list_pages(document_id, status=PageStatus.COMPLETED)

    def get_page(self, page_id: str) -> Page:
        page = self.store.get_page(page_id)
        if page is None:
            raise NotFoundError(f"Page not found: {page_id}")
        return page

    # ===== Deletion =====

    def delete_document(self, document_id: str) -> None:
        """
        Delete a document with its pages, job history and stored file.

        Raises:
            NotFoundError: Unknown document
            DocumentBusyError: A job for the document is still waiting or running
        """
        document = self.get_document(document_id)

        owner = f"delete-{new_id()}"
        if not self.leases.acquire(document_id, owner):
            raise DocumentBusyError(document_id, self.leases.holder(document_id))

        try:
            rendered = self._rendered_images(document)
            self.search_engine.remove_document(document_id)
            self.store.delete_document(document_id)
        finally:
            self.leases.release(document_id, owner)

        for image_path in rendered:
            image_path.unlink(missing_ok=True)

        storage_path = Path(document.storage_path)
        if storage_path.is_file() and storage_path.parent == self.uploads_dir:
            storage_path.unlink()

        logger.info(
            f"Deleted document {document_id[:8]}... ({document.original_name}, "
            f"{len(rendered)} rendered pages)"
        )

    def _rendered_images(self, document: Document) -> List[Path]:
        """Page images the rasterizer wrote for a document (not the source itself)"""
        source = Path(document.storage_path)
        images = []
        for page in self.store.list_pages(document.id):
            if not page.image_path:
                continue
            image_path = Path(page.image_path)
            if image_path != source and image_path.is_file():
                images.append(image_path)
        return images
