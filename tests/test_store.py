"""
Tests for the SQLite document store
"""

import pytest

from docsearch.errors import ValidationError
from docsearch.models import (
    BoundingBox, Document, DocumentStatus, Job, JobStatus, Page, PageStatus,
    TextBlock, new_id, new_job_id
)
from docsearch.store import DocumentStore


def make_document(file_hash="hash-1", uploaded_at="", name="doc.pdf"):
    return Document(
        id=new_id(),
        file_hash=file_hash,
        storage_path=f"/uploads/{name}",
        original_name=name,
        media_type="application/pdf",
        size=1024,
        job_id=new_job_id(),
        uploaded_at=uploaded_at
    )


@pytest.fixture
def document(store):
    doc = store.create_document(make_document())
    store.create_job(Job(job_id=doc.job_id, document_id=doc.id))
    return doc


class TestDocuments:

    def test_create_and_get(self, store, document):
        loaded = store.get_document(document.id)
        assert loaded == document
        assert store.find_document_by_hash("hash-1").id == document.id
        assert store.get_document("missing") is None

    def test_duplicate_hash_rejected(self, store, document):
        with pytest.raises(ValidationError):
            store.create_document(make_document(file_hash="hash-1"))

    def test_update_fields(self, store, document):
        assert store.update_document(
            document.id, status=DocumentStatus.PROCESSING, total_pages=3
        ) == 1

        loaded = store.get_document(document.id)
        assert loaded.status == DocumentStatus.PROCESSING
        assert loaded.total_pages == 3

    def test_update_unknown_field_rejected(self, store, document):
        with pytest.raises(ValueError):
            store.update_document(document.id, colour="blue")

    def test_list_newest_first_with_status_filter(self, store):
        old = store.create_document(make_document("h1", "2024-01-01T00:00:00+00:00", "old.pdf"))
        new = store.create_document(make_document("h2", "2024-06-01T00:00:00+00:00", "new.pdf"))
        pending = store.create_document(make_document("h3", "2024-09-01T00:00:00+00:00"))
        store.update_document(old.id, status=DocumentStatus.COMPLETED)
        store.update_document(new.id, status=DocumentStatus.COMPLETED)

        completed = store.list_documents(status=DocumentStatus.COMPLETED)
        assert [d.id for d in completed] == [new.id, old.id]
        assert store.count_documents(DocumentStatus.COMPLETED) == 2
        assert store.count_documents() == 3

        first_page = store.list_documents(offset=0, limit=1)
        assert [d.id for d in first_page] == [pending.id]

    def test_persists_across_instances(self, tmp_path):
        db_path = tmp_path / "persist.db"
        doc = DocumentStore(db_path).create_document(make_document())
        assert DocumentStore(db_path).get_document(doc.id) == doc


class TestJobs:

    def test_create_update_and_history(self, store, document):
        second = store.create_job(Job(job_id=new_job_id(), document_id=document.id))
        store.update_job(second.job_id, status=JobStatus.ACTIVE, progress=50)

        loaded = store.get_job(second.job_id)
        assert loaded.status == JobStatus.ACTIVE
        assert loaded.progress == 50

        history = store.list_jobs_for_document(document.id)
        assert [j.job_id for j in history] == [document.job_id, second.job_id]

    def test_job_for_unknown_document_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_job(Job(job_id=new_job_id(), document_id="missing"))


class TestPages:

    def _page(self, document, number, status=PageStatus.COMPLETED, text="text"):
        return Page(
            id=new_id(), document_id=document.id, page_number=number,
            text=text, status=status
        )

    def test_text_blocks_round_trip(self, store, document):
        page = self._page(document, 1)
        page.text_blocks = [TextBlock("Hello", 91.0, BoundingBox(1, 2, 30, 40, 91.0))]
        store.create_page(page)

        loaded = store.get_page(page.id)
        assert loaded.text_blocks == page.text_blocks
        assert store.get_page_by_number(document.id, 1).id == page.id

    def test_duplicate_page_number_rejected(self, store, document):
        store.create_page(self._page(document, 1))
        with pytest.raises(ValidationError):
            store.create_page(self._page(document, 1))

    def test_list_in_page_order_with_status_filter(self, store, document):
        store.create_page(self._page(document, 3))
        store.create_page(self._page(document, 1))
        store.create_page(self._page(document, 2, status=PageStatus.FAILED, text=None))

        assert [p.page_number for p in store.list_pages(document.id)] == [1, 2, 3]
        completed = store.list_pages(document.id, status=PageStatus.COMPLETED)
        assert [p.page_number for p in completed] == [1, 3]

    def test_update_page(self, store, document):
        page = store.create_page(self._page(document, 1, status=PageStatus.PROCESSING, text=None))
        store.update_page(page.id, text="done", confidence=77.0, status=PageStatus.COMPLETED)

        loaded = store.get_page(page.id)
        assert loaded.text == "done"
        assert loaded.confidence == 77.0
        assert loaded.status == PageStatus.COMPLETED

    def test_delete_pages(self, store, document):
        store.create_page(self._page(document, 1))
        store.create_page(self._page(document, 2))

        assert store.delete_pages(document.id) == 2
        assert store.list_pages(document.id) == []

    def test_iter_completed_pages(self, store, document):
        first = store.create_page(self._page(document, 1))
        store.create_page(self._page(document, 2, status=PageStatus.FAILED))
        third = store.create_page(self._page(document, 3))

        assert [p.id for p in store.iter_completed_pages()] == [first.id, third.id]


class TestCascade:

    def test_delete_document_removes_pages_and_jobs(self, store, document):
        page = store.create_page(Page(id=new_id(), document_id=document.id, page_number=1))

        assert store.delete_document(document.id) is True
        assert store.get_document(document.id) is None
        assert store.get_page(page.id) is None
        assert store.get_job(document.job_id) is None
        assert store.delete_document(document.id) is False

    def test_stats(self, store, document):
        stats = store.get_stats()
        assert stats['documents'] == {'pending': 1}
        assert stats['jobs'] == {'waiting': 1}
        assert stats['pages'] == {}
