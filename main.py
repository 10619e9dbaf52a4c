"""
DocSearch - Python Backend
Main entry point for document upload, OCR processing and search via
stdin/stdout IPC (one JSON object per line)
"""

import sys
import json
import logging
from dataclasses import dataclass
from typing import Dict, Any, Optional, Callable

from docsearch.config import PipelineSettings, get_settings
from docsearch.dispatch import DispatchQueue
from docsearch.document_service import DocumentService
from docsearch.errors import ValidationError
from docsearch.events import ProgressBroadcaster, StreamPublisher
from docsearch.leases import DocumentLeaseRegistry
from docsearch.ocr.base import OCRConfig, TextRecognizer
from docsearch.ocr.page_processor import PageProcessor
from docsearch.orchestrator import JobOrchestrator
from docsearch.rasterizer import Rasterizer
from docsearch.search import SearchEngine
from docsearch.store import DocumentStore

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


@dataclass
class Application:
    """Wired components of a running backend"""
    settings: PipelineSettings
    store: DocumentStore
    leases: DocumentLeaseRegistry
    search_engine: SearchEngine
    broadcaster: ProgressBroadcaster
    orchestrator: JobOrchestrator
    dispatch_queue: DispatchQueue
    service: DocumentService

    def start(self) -> None:
        self.dispatch_queue.start()

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        self.dispatch_queue.shutdown(wait=wait, timeout=timeout)


def build_application(
    settings: Optional[PipelineSettings] = None,
    broadcaster: Optional[ProgressBroadcaster] = None,
    recognizer: Optional[TextRecognizer] = None
) -> Application:
    """
    Construct every component once and connect them.

    The search index is rebuilt from the store's completed pages. The
    dispatch queue is returned unstarted.

    Args:
        settings: Pipeline settings (defaults to get_settings())
        broadcaster: Event transport (defaults to a stdout StreamPublisher)
        recognizer: Text recognizer (defaults to Tesseract)
    """
    settings = settings or get_settings()
    broadcaster = broadcaster if broadcaster is not None else StreamPublisher(sys.stdout)

    if recognizer is None:
        from docsearch.ocr.engines.tesseract_engine import TesseractRecognizer
        recognizer = TesseractRecognizer(OCRConfig(
            language=settings.default_language,
            tesseract_cmd=settings.tesseract_cmd
        ))

    store = DocumentStore(settings.resolved_database_path())
    leases = DocumentLeaseRegistry()
    search_engine = SearchEngine(
        store=store,
        snippet_radius=settings.snippet_radius,
        fallback_length=settings.snippet_fallback_length
    )

    orchestrator = JobOrchestrator(
        store=store,
        rasterizer=Rasterizer(output_root=settings.pages_dir, dpi=settings.rasterize_dpi),
        page_processor=PageProcessor(recognizer),
        broadcaster=broadcaster,
        search_engine=search_engine,
        leases=leases
    )
    dispatch_queue = DispatchQueue(
        orchestrator.run, concurrency=settings.worker_concurrency, name="ocr"
    )
    service = DocumentService(store, dispatch_queue, search_engine, leases, settings)

    return Application(
        settings=settings,
        store=store,
        leases=leases,
        search_engine=search_engine,
        broadcaster=broadcaster,
        orchestrator=orchestrator,
        dispatch_queue=dispatch_queue,
        service=service
    )


def _require(command: Dict[str, Any], key: str) -> Any:
    value = command.get(key)
    if value is None or value == "":
        raise ValidationError(f"Missing required parameter: {key}")
    return value


def _int_param(command: Dict[str, Any], key: str, default: int) -> int:
    value = command.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Parameter {key} must be an integer, got {value!r}") from e


class IPCHandler:
    """Handles JSON-based IPC communication via stdin/stdout"""

    def __init__(self, app: Application, publisher: Optional[StreamPublisher] = None):
        self.app = app
        self.publisher = publisher or StreamPublisher(sys.stdout)
        self.running = True
        self.current_request_id = None

        self.handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "upload": self.handle_upload,
            "reprocess": self.handle_reprocess,
            "reprocess_page": self.handle_reprocess_page,
            "job_status": self.handle_job_status,
            "search": self.handle_search,
            "correct_page": self.handle_correct_page,
            "list_documents": self.handle_list_documents,
            "document_pages": self.handle_document_pages,
            "get_page": self.handle_get_page,
            "delete_document": self.handle_delete_document,
            "stats": self.handle_stats,
            "shutdown": self.handle_shutdown,
        }

    def send_event(self, event_type: str, data: Any, request_id: str = None):
        """Send an event to the client via stdout"""
        event = {
            "type": event_type,
            "data": data
        }
        if request_id:
            event["request_id"] = request_id
        self.publisher.write(event)

    def send_result(self, result: Any):
        """Send command result"""
        self.send_event("result", result, request_id=self.current_request_id)

    def send_error(self, error_message: str):
        """Send error message"""
        self.send_event("error", {"message": error_message}, request_id=self.current_request_id)

    def handle_command(self, command: Dict[str, Any]):
        """Process incoming command"""
        cmd_type = command.get("command")
        self.current_request_id = command.get("request_id")
        logger.debug(f"Handling command '{cmd_type}' with request_id: {self.current_request_id}")

        handler = self.handlers.get(cmd_type)
        if handler is None:
            self.send_error(f"Unknown command: {cmd_type}")
            return

        try:
            self.send_result(handler(command))
        except ValidationError as e:
            logger.info(f"Command '{cmd_type}' rejected: {e}")
            self.send_error(str(e))
        except Exception as e:
            logger.error(f"Command '{cmd_type}' failed: {e}", exc_info=True)
            self.send_error(str(e))

    # ===== Commands =====

    def handle_upload(self, command: Dict[str, Any]) -> Dict[str, Any]:
        result = self.app.service.upload(
            _require(command, "file_path"),
            original_name=command.get("original_name"),
            media_type=command.get("media_type"),
            language=command.get("language"),
            preprocess=command.get("preprocess")
        )
        return result.to_dict()

    def handle_reprocess(self, command: Dict[str, Any]) -> Dict[str, Any]:
        job_id = self.app.service.reprocess(
            _require(command, "document_id"),
            language=command.get("language"),
            preprocess=command.get("preprocess")
        )
        return {
            "jobId": job_id,
            "message": "Document reprocessing started",
            "parameters": {
                "language": command.get("language") or self.app.settings.default_language,
                "preprocess": command.get("preprocess") or {},
            }
        }

    def handle_reprocess_page(self, command: Dict[str, Any]) -> Dict[str, Any]:
        page_id = _require(command, "page_id")
        job_id = self.app.service.reprocess_page(
            page_id,
            language=command.get("language"),
            preprocess=command.get("preprocess")
        )
        return {"jobId": job_id, "pageId": page_id, "message": "Page reprocessing queued"}

    def handle_job_status(self, command: Dict[str, Any]) -> Dict[str, Any]:
        return self.app.service.get_job_status(_require(command, "job_id"))

    def handle_search(self, command: Dict[str, Any]) -> Dict[str, Any]:
        query = command.get("q", command.get("query"))
        response = self.app.search_engine.search(
            query,
            page=_int_param(command, "page", 1),
            limit=_int_param(command, "limit", self.app.settings.search_default_limit)
        )
        return response.to_dict()

    def handle_correct_page(self, command: Dict[str, Any]) -> Dict[str, Any]:
        page = self.app.service.correct_page(
            _require(command, "page_id"), command.get("text")
        )
        return {"page": page.to_dict()}

    def handle_list_documents(self, command: Dict[str, Any]) -> Dict[str, Any]:
        return self.app.service.list_documents(
            page=_int_param(command, "page", 1),
            limit=_int_param(command, "limit", 10)
        )

    def handle_document_pages(self, command: Dict[str, Any]) -> Dict[str, Any]:
        pages = self.app.service.get_document_pages(_require(command, "document_id"))
        return {"pages": [p.to_dict() for p in pages]}

    def handle_get_page(self, command: Dict[str, Any]) -> Dict[str, Any]:
        page = self.app.service.get_page(_require(command, "page_id"))
        return {"page": page.to_dict()}

    def handle_delete_document(self, command: Dict[str, Any]) -> Dict[str, Any]:
        document_id = _require(command, "document_id")
        self.app.service.delete_document(document_id)
        return {"documentId": document_id, "deleted": True}

    def handle_stats(self, command: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "store": self.app.store.get_stats(),
            "queue": self.app.dispatch_queue.stats(),
            "indexed_pages": len(self.app.search_engine),
        }

    def handle_shutdown(self, command: Dict[str, Any]) -> Dict[str, Any]:
        self.running = False
        return {"message": "Shutting down"}

    def run(self, stream=None):
        """Main event loop - read commands from stdin"""
        stream = stream or sys.stdin
        logger.info("Python backend started, waiting for commands...")

        try:
            for line in stream:
                line = line.strip()
                if not line:
                    continue

                try:
                    command = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.error(f"Invalid JSON: {e}")
                    self.current_request_id = None
                    self.send_error(f"Invalid JSON: {str(e)}")
                    continue

                self.handle_command(command)
                if not self.running:
                    break

        except KeyboardInterrupt:
            logger.info("Interrupted by user")
        finally:
            logger.info("Python backend shutting down")


def main():
    settings = get_settings()

    # Configure logging to stderr (stdout is used for IPC)
    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr
    )

    publisher = StreamPublisher(sys.stdout)
    app = build_application(settings, broadcaster=publisher)
    app.start()

    try:
        IPCHandler(app, publisher).run()
    finally:
        app.shutdown(wait=True)


if __name__ == "__main__":
    main()
