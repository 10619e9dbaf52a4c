"""
Job Orchestrator
Runs one processing job end to end and drives the Document/Job/Page state
machines.

    waiting -> active -> completed | failed

Page-level failures are recorded on the page and the job carries on.
Anything that goes wrong outside the page loop (missing document,
unrasterizable source) fails both the document and the job.

A request naming a single page reruns only that page. Its failures land on
the page and the job; the document status is left alone.
"""

import logging
from typing import Optional

from .errors import DocumentNotFoundError, PageNotFoundError, PageProcessingError
from .events import ProgressBroadcaster, NullBroadcaster
from .leases import DocumentLeaseRegistry
from .models import (
    DocumentStatus, Job, JobStatus, Page, PageStatus, ProcessingRequest,
    compute_progress, new_id, utc_now
)
from .ocr.page_processor import PageProcessor
from .rasterizer import Rasterizer
from .search import SearchEngine
from .store import DocumentStore

logger = logging.getLogger(__name__)


class JobOrchestrator:
    """Dispatch-queue handler that processes a document for one job"""

    def __init__(
        self,
        store: DocumentStore,
        rasterizer: Rasterizer,
        page_processor: PageProcessor,
        broadcaster: Optional[ProgressBroadcaster] = None,
        search_engine: Optional[SearchEngine] = None,
        leases: Optional[DocumentLeaseRegistry] = None
    ):
        self.store = store
        self.rasterizer = rasterizer
        self.page_processor = page_processor
        self.broadcaster = broadcaster if broadcaster is not None else NullBroadcaster()
        self.search_engine = search_engine
        self.leases = leases if leases is not None else DocumentLeaseRegistry()

    def __call__(self, request: ProcessingRequest) -> Job:
        return self.run(request)

    def run(self, request: ProcessingRequest) -> Job:
        """
        Process the document named by a request.

        Args:
            request: Processing request from the dispatch queue

        Returns:
            The job in its final state
        """
        job = self.store.get_job(request.job_id)
        if job is None:
            if self.store.get_document(request.document_id) is None:
                error = str(DocumentNotFoundError(request.document_id))
                logger.error(f"Job {request.job_id} failed: {error}")
                self.broadcaster.failed(request.job_id, error)
                return Job(
                    job_id=request.job_id,
                    document_id=request.document_id,
                    status=JobStatus.FAILED,
                    completed_at=utc_now(),
                    error=error
                )
            job = self.store.create_job(Job(
                job_id=request.job_id, document_id=request.document_id
            ))
        elif job.status.is_terminal:
            logger.info(f"Job {job.job_id} already {job.status.value}, nothing to do")
            return job

        if not self.leases.acquire(request.document_id, request.job_id):
            holder = self.leases.holder(request.document_id)
            error = f"Document {request.document_id} is locked by job {holder}"
            logger.warning(f"Job {request.job_id} rejected: {error}")
            self.store.update_job(
                request.job_id,
                status=JobStatus.FAILED,
                error=error,
                completed_at=utc_now()
            )
            self.broadcaster.failed(request.job_id, error)
            return self.store.get_job(request.job_id)

        try:
            if request.page_id:
                return self._run_page(request)
            return self._run_locked(request)
        finally:
            self.leases.release(request.document_id, request.job_id)

    def _run_locked(self, request: ProcessingRequest) -> Job:
        job_id = request.job_id
        document_id = request.document_id

        try:
            self.store.update_job(job_id, status=JobStatus.ACTIVE, started_at=utc_now())

            document = self.store.get_document(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)

            self.store.update_document(document_id, status=DocumentStatus.PROCESSING)
            logger.info(f"Job {job_id}: processing {document.original_name}")

            source = self.rasterizer.rasterize(request.source_path, document.media_type)
            total_pages = source.page_count

            self.store.update_document(document_id, total_pages=total_pages, processed_pages=0)
            self.store.update_job(job_id, total_pages=total_pages, processed_pages=0, progress=0)

            processed = 0
            for page_number, image_path in enumerate(source.image_paths, start=1):
                self._process_page(
                    request, document.original_name, page_number, image_path, source.kind
                )

                processed += 1
                progress = compute_progress(processed, total_pages)
                self.store.update_document(document_id, processed_pages=processed)
                self.store.update_job(job_id, processed_pages=processed, progress=progress)
                self.broadcaster.progress(job_id, progress, processed, total_pages, page_number)

            now = utc_now()
            self.store.update_document(
                document_id, status=DocumentStatus.COMPLETED, processed_at=now, error=None
            )
            self.store.update_job(
                job_id,
                status=JobStatus.COMPLETED,
                progress=100 if total_pages > 0 else 0,
                completed_at=now
            )
            logger.info(f"Job {job_id}: completed {total_pages} pages")
            self.broadcaster.completed(job_id)

        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.error(f"Job {job_id} failed: {error}", exc_info=True)
            self._fail(job_id, document_id, error)
            self.broadcaster.failed(job_id, error)

        return self.store.get_job(job_id)

    def _run_page(self, request: ProcessingRequest) -> Job:
        job_id = request.job_id
        document_id = request.document_id

        try:
            self.store.update_job(
                job_id, status=JobStatus.ACTIVE, started_at=utc_now(),
                total_pages=1, processed_pages=0, progress=0
            )

            document = self.store.get_document(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)
            page = self.store.get_page(request.page_id)
            if page is None or page.document_id != document_id:
                raise PageNotFoundError(request.page_id)

            logger.info(
                f"Job {job_id}: reprocessing page {page.page_number} of {document.original_name}"
            )
            self.store.update_page(page.id, status=PageStatus.PROCESSING, error=None)

            image_path, kind = self.rasterizer.render_page(
                request.source_path, page.page_number, document.media_type
            )
            page.image_path = image_path
            self.store.update_page(page.id, image_path=image_path)
            self._recognize(request, page, document.original_name, kind)

            now = utc_now()
            self.store.update_job(
                job_id, status=JobStatus.COMPLETED, processed_pages=1, progress=100,
                completed_at=now
            )
            self.broadcaster.progress(job_id, 100, 1, 1, page.page_number)
            logger.info(f"Job {job_id}: page {page.page_number} {page.status.value}")
            self.broadcaster.completed(job_id)

        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.error(f"Job {job_id} failed: {error}", exc_info=True)
            if request.page_id and self.store.get_page(request.page_id) is not None:
                self.store.update_page(
                    request.page_id, status=PageStatus.FAILED, error=error,
                    processed_at=utc_now()
                )
            self.store.update_job(
                job_id, status=JobStatus.FAILED, error=error, completed_at=utc_now()
            )
            self.broadcaster.failed(job_id, error)

        return self.store.get_job(job_id)

    def _process_page(
        self,
        request: ProcessingRequest,
        document_name: str,
        page_number: int,
        image_path: str,
        kind: str
    ) -> Page:
        page = self.store.create_page(Page(
            id=new_id(),
            document_id=request.document_id,
            page_number=page_number,
            status=PageStatus.PROCESSING,
            image_path=image_path
        ))
        return self._recognize(request, page, document_name, kind)

    def _recognize(
        self,
        request: ProcessingRequest,
        page: Page,
        document_name: str,
        kind: str
    ) -> Page:
        """Run recognition for a stored page and persist the outcome"""
        page_number = page.page_number
        try:
            result = self.page_processor.process(
                page.image_path, page_number, kind, request.language, request.preprocess
            )
        except PageProcessingError as e:
            logger.error(f"Job {request.job_id}: page {page_number} failed: {e}")
            page.status = PageStatus.FAILED
            page.error = str(e)
            page.processed_at = utc_now()
            self.store.update_page(
                page.id, status=page.status, error=page.error, processed_at=page.processed_at
            )
            return page

        page.text = result.text
        page.confidence = result.confidence
        page.text_blocks = result.text_blocks
        page.status = PageStatus.COMPLETED
        page.error = None
        page.processed_at = utc_now()
        self.store.update_page(
            page.id,
            error=None,
            text=page.text,
            confidence=page.confidence,
            text_blocks=page.text_blocks,
            status=page.status,
            processed_at=page.processed_at
        )

        if self.search_engine is not None:
            self.search_engine.index_page(page, document_name)

        return page

    def _fail(self, job_id: str, document_id: str, error: str) -> None:
        now = utc_now()
        if self.store.get_document(document_id) is not None:
            self.store.update_document(document_id, status=DocumentStatus.FAILED, error=error)
        self.store.update_job(job_id, status=JobStatus.FAILED, error=error, completed_at=now)
