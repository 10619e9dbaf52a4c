"""
Tests for the document service running on the fully wired application
"""

from pathlib import Path

import pytest

from docsearch.errors import DocumentBusyError, NotFoundError, ValidationError
from docsearch.models import DocumentStatus, JobStatus, PageStatus


def upload_and_wait(app, path, **kwargs):
    result = app.service.upload(path, **kwargs)
    assert app.dispatch_queue.join(timeout=30)
    return result


class TestUpload:

    def test_text_upload_completes(self, app, sample_text_file):
        result = upload_and_wait(app, sample_text_file)

        assert result.duplicate is False
        assert result.message == "Document uploaded successfully"

        status = app.service.get_job_status(result.job_id)
        assert status['status'] == "completed"
        assert status['progress'] == 100
        assert status['document']['originalName'] == "notes.txt"
        assert status['document']['mediaType'] == "text/plain"

        stored = Path(status['document']['storagePath'])
        assert stored.parent == app.service.uploads_dir
        assert stored.read_bytes() == sample_text_file.read_bytes()

    def test_lease_released_when_job_finishes(self, app, sample_pdf):
        result = upload_and_wait(app, sample_pdf)

        assert app.service.get_job_status(result.job_id)["status"] == "completed"
        assert not app.leases.is_held(result.document_id)

    def test_pdf_upload_indexes_every_page(self, app, sample_pdf, fake_recognizer):
        result = upload_and_wait(app, sample_pdf, language="deu")

        pages = app.service.get_document_pages(result.document_id)
        assert [p.page_number for p in pages] == [1, 2, 3]
        assert {c['language'] for c in fake_recognizer.calls} == {"deu"}
        assert app.search_engine.search("recognized").total == 3

    def test_duplicate_upload_returns_existing(self, app, sample_text_file, tmp_path):
        first = upload_and_wait(app, sample_text_file)
        copy = tmp_path / "renamed.txt"
        copy.write_bytes(sample_text_file.read_bytes())

        second = app.service.upload(copy)

        assert second.duplicate is True
        assert second.message == "Document already exists"
        assert (second.document_id, second.job_id) == (first.document_id, first.job_id)
        assert app.store.count_documents() == 1
        assert len(app.store.list_jobs_for_document(first.document_id)) == 1

    def test_missing_file_rejected(self, app, tmp_path):
        with pytest.raises(ValidationError):
            app.service.upload(tmp_path / "missing.pdf")
        assert app.store.count_documents() == 0


class TestReprocess:

    def test_new_job_recreates_pages(self, app, sample_pdf):
        upload = upload_and_wait(app, sample_pdf)
        old_ids = {p.id for p in app.store.list_pages(upload.document_id)}

        job_id = app.service.reprocess(upload.document_id)
        assert app.dispatch_queue.join(timeout=30)

        assert job_id != upload.job_id
        assert app.store.get_job(job_id).status == JobStatus.COMPLETED
        document = app.store.get_document(upload.document_id)
        assert document.job_id == job_id
        assert document.status == DocumentStatus.COMPLETED

        pages = app.store.list_pages(upload.document_id)
        assert len(pages) == 3
        assert not old_ids & {p.id for p in pages}

        jobs = app.store.list_jobs_for_document(upload.document_id)
        assert {j.job_id for j in jobs} == {upload.job_id, job_id}

    def test_old_pages_deleted_before_new_pages(self, app, sample_pdf, monkeypatch):
        upload = upload_and_wait(app, sample_pdf)
        calls = []
        delete_pages = app.store.delete_pages
        create_page = app.store.create_page

        def spy_delete(document_id):
            calls.append("delete")
            return delete_pages(document_id)

        def spy_create(page):
            calls.append("create")
            return create_page(page)

        monkeypatch.setattr(app.store, "delete_pages", spy_delete)
        monkeypatch.setattr(app.store, "create_page", spy_create)

        app.service.reprocess(upload.document_id)
        assert app.dispatch_queue.join(timeout=30)

        assert calls == ["delete", "create", "create", "create"]

    def test_options_reach_request(self, app, sample_text_file, monkeypatch):
        upload = upload_and_wait(app, sample_text_file)
        requests = []
        enqueue = app.dispatch_queue.enqueue

        def spy_enqueue(request):
            requests.append(request)
            return enqueue(request)

        monkeypatch.setattr(app.dispatch_queue, "enqueue", spy_enqueue)

        app.service.reprocess(
            upload.document_id, language="fra",
            preprocess={"binarize": False, "deskew": True, "unknown": 1}
        )
        assert app.dispatch_queue.join(timeout=30)

        request = requests[0]
        assert request.language == "fra"
        assert request.preprocess.binarize is False
        assert request.preprocess.deskew is True

    def test_unknown_document(self, app):
        with pytest.raises(NotFoundError):
            app.service.reprocess("no-such-document")

    def test_busy_document(self, app, sample_text_file):
        upload = upload_and_wait(app, sample_text_file)
        app.leases.acquire(upload.document_id, "running-job")

        with pytest.raises(DocumentBusyError) as exc_info:
            app.service.reprocess(upload.document_id)

        assert exc_info.value.holder == "running-job"
        assert len(app.store.list_jobs_for_document(upload.document_id)) == 1
        assert len(app.store.list_pages(upload.document_id)) == 1


class TestPageReprocess:

    def test_only_that_page_changes(self, app, sample_pdf, fake_recognizer):
        upload = upload_and_wait(app, sample_pdf)
        before = app.store.list_pages(upload.document_id)
        fake_recognizer.default_text = "sharper second page"

        job_id = app.service.reprocess_page(before[1].id, language="deu")
        assert app.dispatch_queue.join(timeout=30)

        after = app.store.list_pages(upload.document_id)
        assert [p.id for p in after] == [p.id for p in before]
        assert after[1].text == "sharper second page"
        assert after[1].status == PageStatus.COMPLETED
        assert [after[0].text, after[2].text] == [before[0].text, before[2].text]
        assert fake_recognizer.calls[-1]['language'] == "deu"

        assert app.search_engine.search("sharper").results[0].page_id == before[1].id

        job = app.store.get_job(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.total_pages == 1
        document = app.store.get_document(upload.document_id)
        assert document.status == DocumentStatus.COMPLETED
        assert document.job_id == upload.job_id
        assert not app.leases.is_held(upload.document_id)

    def test_page_pending_and_unindexed_until_processed(self, app, sample_pdf,
                                                        monkeypatch):
        upload = upload_and_wait(app, sample_pdf)
        page = app.store.list_pages(upload.document_id)[0]
        requests = []
        monkeypatch.setattr(app.dispatch_queue, "enqueue", requests.append)

        job_id = app.service.reprocess_page(page.id)

        assert requests[0].page_id == page.id
        assert requests[0].job_id == job_id
        assert app.store.get_page(page.id).status == PageStatus.PENDING
        assert page.id not in {r.page_id for r in app.search_engine.search("recognized").results}
        assert app.leases.holder(upload.document_id) == job_id

    def test_enqueue_failure_releases_lease(self, app, sample_text_file, monkeypatch):
        upload = upload_and_wait(app, sample_text_file)
        page = app.store.list_pages(upload.document_id)[0]

        def refuse(request):
            raise RuntimeError("queue stopped")

        monkeypatch.setattr(app.dispatch_queue, "enqueue", refuse)

        with pytest.raises(RuntimeError):
            app.service.reprocess_page(page.id)
        assert not app.leases.is_held(upload.document_id)

    def test_busy_document(self, app, sample_text_file):
        upload = upload_and_wait(app, sample_text_file)
        page = app.store.list_pages(upload.document_id)[0]
        app.leases.acquire(upload.document_id, "running-job")

        with pytest.raises(DocumentBusyError):
            app.service.reprocess_page(page.id)

        assert app.store.get_page(page.id).status == PageStatus.COMPLETED
        assert app.search_engine.search("machine").total == 1

    def test_unknown_page(self, app):
        with pytest.raises(NotFoundError):
            app.service.reprocess_page("no-such-page")


class TestCorrection:

    def test_correction_replaces_text(self, app, sample_text_file):
        upload = upload_and_wait(app, sample_text_file)
        page = app.service.get_document_pages(upload.document_id)[0]

        corrected = app.service.correct_page(page.id, "Corrected invoice total")

        assert corrected.confidence == 100
        stored = app.service.get_page(page.id)
        assert stored.text == "Corrected invoice total"
        assert stored.confidence == 100
        assert stored.status == PageStatus.COMPLETED

        assert app.search_engine.search("invoice").total == 1
        assert app.search_engine.search("machine").total == 0

    def test_correction_is_idempotent(self, app, sample_text_file):
        upload = upload_and_wait(app, sample_text_file)
        page = app.service.get_document_pages(upload.document_id)[0]

        app.service.correct_page(page.id, "same text")
        app.service.correct_page(page.id, "same text")

        assert app.service.get_page(page.id).text == "same text"
        assert app.search_engine.search("same").total == 1

    def test_empty_text_rejected(self, app, sample_text_file):
        upload = upload_and_wait(app, sample_text_file)
        page = app.service.get_document_pages(upload.document_id)[0]

        with pytest.raises(ValidationError):
            app.service.correct_page(page.id, "  ")
        assert app.service.get_page(page.id).confidence == 95

    def test_unknown_page(self, app):
        with pytest.raises(NotFoundError):
            app.service.correct_page("no-such-page", "text")


class TestLookups:

    def test_list_documents_completed_newest_first(self, app, sample_text_file,
                                                   sample_pdf, tmp_path):
        first = upload_and_wait(app, sample_text_file)
        second = upload_and_wait(app, sample_pdf)
        broken = tmp_path / "broken.pdf"
        broken.write_bytes(b"not a pdf")
        failed = upload_and_wait(app, broken)

        listing = app.service.list_documents(page=1, limit=10)

        ids = [d['id'] for d in listing['documents']]
        assert ids == [second.document_id, first.document_id]
        assert failed.document_id not in ids
        assert listing['pagination'] == {'page': 1, 'limit': 10, 'total': 2, 'pages': 1}

    def test_list_documents_rejects_bad_pagination(self, app):
        with pytest.raises(ValidationError):
            app.service.list_documents(page=0)

    def test_unknown_identifiers(self, app):
        with pytest.raises(NotFoundError):
            app.service.get_job_status("missing-job")
        with pytest.raises(NotFoundError):
            app.service.get_document_pages("missing-document")
        with pytest.raises(NotFoundError):
            app.service.get_page("missing-page")


class TestDeletion:

    def test_delete_cascades(self, app, sample_pdf):
        upload = upload_and_wait(app, sample_pdf)
        stored = Path(app.store.get_document(upload.document_id).storage_path)
        rendered = [Path(p.image_path) for p in app.store.list_pages(upload.document_id)]
        assert len(rendered) == 3 and all(p.is_file() for p in rendered)

        app.service.delete_document(upload.document_id)

        assert app.store.get_document(upload.document_id) is None
        assert app.store.list_pages(upload.document_id) == []
        assert app.store.get_job(upload.job_id) is None
        assert app.search_engine.search("recognized").total == 0
        assert not stored.exists()
        assert not any(p.exists() for p in rendered)
        assert not app.leases.is_held(upload.document_id)

    def test_delete_allows_fresh_upload(self, app, sample_text_file):
        upload = upload_and_wait(app, sample_text_file)
        app.service.delete_document(upload.document_id)

        again = upload_and_wait(app, sample_text_file)

        assert again.duplicate is False
        assert again.document_id != upload.document_id

    def test_delete_busy_document(self, app, sample_text_file):
        upload = upload_and_wait(app, sample_text_file)
        app.leases.acquire(upload.document_id, "running-job")

        with pytest.raises(DocumentBusyError):
            app.service.delete_document(upload.document_id)
        assert app.store.get_document(upload.document_id) is not None

    def test_delete_unknown_document(self, app):
        with pytest.raises(NotFoundError):
            app.service.delete_document("no-such-document")
