"""
Document Store
Persistent SQLite storage for documents, processing jobs and pages
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Dict, List, Any, Iterator

from .errors import ValidationError
from .models import (
    Document, DocumentStatus, Job, JobStatus, Page, PageStatus, TextBlock
)

logger = logging.getLogger(__name__)

DOCUMENT_COLUMNS = (
    'id', 'file_hash', 'storage_path', 'original_name', 'media_type', 'size',
    'job_id', 'status', 'total_pages', 'processed_pages', 'uploaded_at',
    'processed_at', 'error'
)
JOB_COLUMNS = (
    'job_id', 'document_id', 'status', 'progress', 'total_pages',
    'processed_pages', 'created_at', 'started_at', 'completed_at', 'error'
)
PAGE_COLUMNS = (
    'id', 'document_id', 'page_number', 'text', 'confidence', 'text_blocks',
    'status', 'processed_at', 'error', 'image_path'
)


def _to_db(value: Any) -> Any:
    if hasattr(value, 'value') and not isinstance(value, (int, float, str)):
        return value.value
    return value


class DocumentStore:
    """
    SQLite store with simple CRUD operations.

    Responsibilities:
    - Database schema creation and versioning
    - CRUD for documents, jobs and pages
    - Cascade delete of pages and job history with their document

    A new connection is opened per operation so the store can be shared
    between worker threads.
    """

    DB_VERSION = 1

    def __init__(self, db_path: Path):
        """
        Initialize the store.

        Args:
            db_path: Path to the SQLite database file (created if missing)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()
        logger.info(f"Document store initialized: {self.db_path}")

    @contextmanager
    def get_connection(self):
        """Context manager for database connections"""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise
        except Exception as e:
            conn.rollback()
            logger.error(f"Database error: {e}", exc_info=True)
            raise
        finally:
            conn.close()

    def _initialize_database(self):
        """Create database schema if not exists"""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS _metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

            cursor.execute("SELECT value FROM _metadata WHERE key = 'version'")
            result = cursor.fetchone()

            if not result:
                self._create_schema(cursor)
                cursor.execute(
                    "INSERT INTO _metadata (key, value) VALUES ('version', ?)",
                    (str(self.DB_VERSION),)
                )
                logger.info(f"Database schema created (version {self.DB_VERSION})")
            else:
                version = int(result[0])
                if version < self.DB_VERSION:
                    self._upgrade_schema(cursor, version, self.DB_VERSION)

    def _create_schema(self, cursor):
        """Create all database tables"""

        cursor.execute("""
            CREATE TABLE documents (
                id TEXT PRIMARY KEY,
                file_hash TEXT NOT NULL UNIQUE,
                storage_path TEXT NOT NULL,
                original_name TEXT NOT NULL,
                media_type TEXT NOT NULL,
                size INTEGER NOT NULL,
                job_id TEXT NOT NULL,
                status TEXT DEFAULT 'pending',
                total_pages INTEGER DEFAULT 0,
                processed_pages INTEGER DEFAULT 0,
                uploaded_at TEXT NOT NULL,
                processed_at TEXT,
                error TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE jobs (
                job_id TEXT PRIMARY KEY,
                document_id TEXT NOT NULL,
                status TEXT DEFAULT 'waiting',
                progress INTEGER DEFAULT 0,
                total_pages INTEGER DEFAULT 0,
                processed_pages INTEGER DEFAULT 0,
                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                error TEXT,
                FOREIGN KEY (document_id) REFERENCES documents(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE pages (
                id TEXT PRIMARY KEY,
                document_id TEXT NOT NULL,
                page_number INTEGER NOT NULL,
                text TEXT,
                confidence REAL DEFAULT 0,
                text_blocks TEXT,
                status TEXT DEFAULT 'pending',
                processed_at TEXT,
                error TEXT,
                image_path TEXT,
                UNIQUE (document_id, page_number),
                FOREIGN KEY (document_id) REFERENCES documents(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("CREATE INDEX idx_documents_status ON documents(status)")
        cursor.execute("CREATE INDEX idx_documents_uploaded ON documents(uploaded_at)")
        cursor.execute("CREATE INDEX idx_jobs_document ON jobs(document_id)")
        cursor.execute("CREATE INDEX idx_pages_document ON pages(document_id, page_number)")
        cursor.execute("CREATE INDEX idx_pages_status ON pages(status)")

    def _upgrade_schema(self, cursor, from_version: int, to_version: int):
        """Upgrade database schema between versions"""
        logger.info(f"Upgrading database from v{from_version} to v{to_version}")

    # ===== Row conversion =====

    @staticmethod
    def _row_to_document(row) -> Document:
        return Document(
            id=row['id'],
            file_hash=row['file_hash'],
            storage_path=row['storage_path'],
            original_name=row['original_name'],
            media_type=row['media_type'],
            size=row['size'],
            job_id=row['job_id'],
            status=DocumentStatus(row['status']),
            total_pages=row['total_pages'],
            processed_pages=row['processed_pages'],
            uploaded_at=row['uploaded_at'],
            processed_at=row['processed_at'],
            error=row['error']
        )

    @staticmethod
    def _row_to_job(row) -> Job:
        return Job(
            job_id=row['job_id'],
            document_id=row['document_id'],
            status=JobStatus(row['status']),
            progress=row['progress'],
            total_pages=row['total_pages'],
            processed_pages=row['processed_pages'],
            created_at=row['created_at'],
            started_at=row['started_at'],
            completed_at=row['completed_at'],
            error=row['error']
        )

    @staticmethod
    def _row_to_page(row) -> Page:
        blocks = json.loads(row['text_blocks']) if row['text_blocks'] else []
        return Page(
            id=row['id'],
            document_id=row['document_id'],
            page_number=row['page_number'],
            text=row['text'],
            confidence=row['confidence'],
            text_blocks=[TextBlock.from_dict(b) for b in blocks],
            status=PageStatus(row['status']),
            processed_at=row['processed_at'],
            error=row['error'],
            image_path=row['image_path']
        )

    @staticmethod
    def _page_values(page: Page) -> Dict[str, Any]:
        return {
            'id': page.id,
            'document_id': page.document_id,
            'page_number': page.page_number,
            'text': page.text,
            'confidence': page.confidence,
            'text_blocks': json.dumps([b.to_dict() for b in page.text_blocks]),
            'status': page.status.value,
            'processed_at': page.processed_at,
            'error': page.error,
            'image_path': page.image_path,
        }

    def _update(self, table: str, key_column: str, key: str,
                allowed: tuple, fields: Dict[str, Any]) -> int:
        unknown = set(fields) - set(allowed)
        if unknown:
            raise ValueError(f"Unknown {table} fields: {', '.join(sorted(unknown))}")
        if not fields:
            return 0

        if 'text_blocks' in fields:
            fields['text_blocks'] = json.dumps([b.to_dict() for b in fields['text_blocks']])

        assignments = ', '.join(f"{name} = ?" for name in fields)
        values = [_to_db(v) for v in fields.values()] + [key]

        with self.get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET {assignments} WHERE {key_column} = ?",
                values
            )
            return cursor.rowcount

    # ===== Document Management =====

    def create_document(self, document: Document) -> Document:
        """
        Insert a new document.

        Raises:
            ValidationError: If a document with the same file hash exists
        """
        values = {c: _to_db(getattr(document, c)) for c in DOCUMENT_COLUMNS}
        placeholders = ', '.join('?' for _ in DOCUMENT_COLUMNS)

        try:
            with self.get_connection() as conn:
                conn.execute(
                    f"INSERT INTO documents ({', '.join(DOCUMENT_COLUMNS)}) VALUES ({placeholders})",
                    tuple(values.values())
                )
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Document already exists: {e}") from e

        logger.info(f"Created document entry: {document.id[:8]}... ({document.original_name})")
        return document

    def get_document(self, document_id: str) -> Optional[Document]:
        """Get document by ID"""
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
            return self._row_to_document(row) if row else None

    def find_document_by_hash(self, file_hash: str) -> Optional[Document]:
        """Find existing document by content fingerprint"""
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE file_hash = ?", (file_hash,)
            ).fetchone()
            return self._row_to_document(row) if row else None

    def update_document(self, document_id: str, **fields) -> int:
        """Update document columns, returns the number of rows touched"""
        return self._update('documents', 'id', document_id, DOCUMENT_COLUMNS[1:], fields)

    def list_documents(
        self,
        status: Optional[DocumentStatus] = None,
        offset: int = 0,
        limit: int = 10
    ) -> List[Document]:
        """List documents newest first, optionally filtered by status"""
        with self.get_connection() as conn:
            if status:
                cursor = conn.execute("""
                    SELECT * FROM documents WHERE status = ?
                    ORDER BY uploaded_at DESC, rowid DESC
                    LIMIT ? OFFSET ?
                """, (status.value, limit, offset))
            else:
                cursor = conn.execute("""
                    SELECT * FROM documents
                    ORDER BY uploaded_at DESC, rowid DESC
                    LIMIT ? OFFSET ?
                """, (limit, offset))
            return [self._row_to_document(row) for row in cursor.fetchall()]

    def count_documents(self, status: Optional[DocumentStatus] = None) -> int:
        with self.get_connection() as conn:
            if status:
                cursor = conn.execute(
                    "SELECT COUNT(*) FROM documents WHERE status = ?", (status.value,)
                )
            else:
                cursor = conn.execute("SELECT COUNT(*) FROM documents")
            return cursor.fetchone()[0]

    def delete_document(self, document_id: str) -> bool:
        """Delete a document and all related pages and jobs (CASCADE)"""
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted document: {document_id[:8]}...")
        return deleted

    # ===== Job Management =====

    def create_job(self, job: Job) -> Job:
        values = tuple(_to_db(getattr(job, c)) for c in JOB_COLUMNS)
        placeholders = ', '.join('?' for _ in JOB_COLUMNS)

        try:
            with self.get_connection() as conn:
                conn.execute(
                    f"INSERT INTO jobs ({', '.join(JOB_COLUMNS)}) VALUES ({placeholders})",
                    values
                )
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Cannot create job {job.job_id}: {e}") from e

        logger.info(f"Created job {job.job_id} for document {job.document_id[:8]}...")
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE job_id = ?", (job_id,)
            ).fetchone()
            return self._row_to_job(row) if row else None

    def update_job(self, job_id: str, **fields) -> int:
        return self._update('jobs', 'job_id', job_id, JOB_COLUMNS[1:], fields)

    def list_jobs_for_document(self, document_id: str) -> List[Job]:
        """Job history of a document, oldest first"""
        with self.get_connection() as conn:
            cursor = conn.execute("""
                SELECT * FROM jobs WHERE document_id = ?
                ORDER BY created_at, rowid
            """, (document_id,))
            return [self._row_to_job(row) for row in cursor.fetchall()]

    # ===== Page Management =====

    def create_page(self, page: Page) -> Page:
        """
        Insert a page.

        Raises:
            ValidationError: If the document already has this page number
        """
        values = self._page_values(page)
        placeholders = ', '.join('?' for _ in PAGE_COLUMNS)

        try:
            with self.get_connection() as conn:
                conn.execute(
                    f"INSERT INTO pages ({', '.join(PAGE_COLUMNS)}) VALUES ({placeholders})",
                    tuple(values[c] for c in PAGE_COLUMNS)
                )
        except sqlite3.IntegrityError as e:
            raise ValidationError(
                f"Cannot create page {page.page_number} of document {page.document_id}: {e}"
            ) from e

        return page

    def get_page(self, page_id: str) -> Optional[Page]:
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM pages WHERE id = ?", (page_id,)).fetchone()
            return self._row_to_page(row) if row else None

    def get_page_by_number(self, document_id: str, page_number: int) -> Optional[Page]:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM pages WHERE document_id = ? AND page_number = ?",
                (document_id, page_number)
            ).fetchone()
            return self._row_to_page(row) if row else None

    def update_page(self, page_id: str, **fields) -> int:
        return self._update('pages', 'id', page_id, PAGE_COLUMNS[1:], fields)

    def list_pages(
        self,
        document_id: str,
        status: Optional[PageStatus] = None
    ) -> List[Page]:
        """Pages of a document in page order"""
        with self.get_connection() as conn:
            if status:
                cursor = conn.execute("""
                    SELECT * FROM pages WHERE document_id = ? AND status = ?
                    ORDER BY page_number
                """, (document_id, status.value))
            else:
                cursor = conn.execute(
                    "SELECT * FROM pages WHERE document_id = ? ORDER BY page_number",
                    (document_id,)
                )
            return [self._row_to_page(row) for row in cursor.fetchall()]

    def delete_pages(self, document_id: str) -> int:
        """Delete all pages of a document, returns the number removed"""
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM pages WHERE document_id = ?", (document_id,))
            count = cursor.rowcount

        logger.info(f"Deleted {count} pages of document {document_id[:8]}...")
        return count

    def iter_completed_pages(self) -> Iterator[Page]:
        """All completed pages in insertion order"""
        with self.get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM pages WHERE status = ? ORDER BY rowid",
                (PageStatus.COMPLETED.value,)
            )
            rows = cursor.fetchall()

        for row in rows:
            yield self._row_to_page(row)

    # ===== Statistics =====

    def get_stats(self) -> Dict[str, Any]:
        """Counts per status for monitoring"""
        with self.get_connection() as conn:
            documents = {
                row['status']: row['count'] for row in conn.execute(
                    "SELECT status, COUNT(*) AS count FROM documents GROUP BY status"
                )
            }
            jobs = {
                row['status']: row['count'] for row in conn.execute(
                    "SELECT status, COUNT(*) AS count FROM jobs GROUP BY status"
                )
            }
            pages = {
                row['status']: row['count'] for row in conn.execute(
                    "SELECT status, COUNT(*) AS count FROM pages GROUP BY status"
                )
            }

        return {
            'db_path': str(self.db_path),
            'documents': documents,
            'jobs': jobs,
            'pages': pages,
        }
