"""
Unit Tests for data models and request/option types
"""

import pytest

from docsearch.errors import ValidationError
from docsearch.models import (
    BoundingBox, Document, DocumentStatus, JobStatus, PreprocessOptions,
    ProcessingRequest, TextBlock, compute_progress, new_id, new_job_id
)


class TestProgress:
    """Test compute_progress"""

    def test_zero_before_page_count_known(self):
        assert compute_progress(0, 0) == 0
        assert compute_progress(3, 0) == 0

    def test_rounds_to_integer_percent(self):
        assert compute_progress(1, 3) == 33
        assert compute_progress(2, 3) == 67
        assert compute_progress(3, 3) == 100


class TestStatuses:

    def test_terminal_job_states(self):
        assert JobStatus.COMPLETED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.WAITING.is_terminal
        assert not JobStatus.ACTIVE.is_terminal

    def test_identifiers_are_unique(self):
        assert new_id() != new_id()
        assert new_job_id() != new_job_id()


class TestPreprocessOptions:
    """Test typed preprocessing options"""

    def test_defaults(self):
        options = PreprocessOptions()
        assert options.rotate is None
        assert options.binarize is True
        assert options.threshold == 128
        assert options.denoise is False
        assert options.deskew is False

    def test_threshold_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            PreprocessOptions(threshold=300)
        with pytest.raises(ValidationError):
            PreprocessOptions(threshold=-1)

    def test_non_numeric_threshold_rejected(self):
        with pytest.raises(ValidationError, match="integer"):
            PreprocessOptions(threshold="abc")
        with pytest.raises(ValidationError):
            PreprocessOptions.from_dict({'threshold': [1, 2]})

    def test_numeric_string_threshold_coerced(self):
        assert PreprocessOptions.from_dict({'threshold': "90"}).threshold == 90

    def test_from_dict_ignores_unknown_keys(self):
        options = PreprocessOptions.from_dict({'deskew': True, 'sharpen': True})
        assert options.deskew is True
        assert not hasattr(options, 'sharpen')

    def test_from_dict_falsy_threshold_uses_default(self):
        assert PreprocessOptions.from_dict({'threshold': 0}).threshold == 128
        assert PreprocessOptions.from_dict({'threshold': None}).threshold == 128
        assert PreprocessOptions.from_dict({'threshold': 90}).threshold == 90

    def test_from_dict_empty(self):
        assert PreprocessOptions.from_dict(None) == PreprocessOptions()
        assert PreprocessOptions.from_dict({}) == PreprocessOptions()


class TestProcessingRequest:
    """Test the dispatch request shape"""

    def test_from_dict_applies_defaults(self):
        request = ProcessingRequest.from_dict({
            'documentId': 'doc-1',
            'sourcePath': '/tmp/doc.pdf',
            'jobId': 'job-1',
        })
        assert request.language == 'eng'
        assert request.preprocess == PreprocessOptions()

    def test_from_dict_reads_options(self):
        request = ProcessingRequest.from_dict({
            'documentId': 'doc-1',
            'sourcePath': '/tmp/doc.pdf',
            'jobId': 'job-1',
            'language': 'deu',
            'preprocess': {'binarize': False, 'rotate': 90},
        })
        assert request.language == 'deu'
        assert request.preprocess.binarize is False
        assert request.preprocess.rotate == 90

    def test_missing_fields_rejected(self):
        with pytest.raises(ValidationError, match="jobId"):
            ProcessingRequest.from_dict({'documentId': 'doc-1', 'sourcePath': '/tmp/x'})

    def test_to_dict_uses_wire_names(self):
        request = ProcessingRequest(document_id='d', source_path='/s', job_id='j')
        data = request.to_dict()
        assert set(data) == {
            'documentId', 'sourcePath', 'jobId', 'language', 'preprocess', 'pageId'
        }
        assert data['preprocess']['threshold'] == 128
        assert data['pageId'] is None

    def test_page_id_read_from_wire(self):
        request = ProcessingRequest.from_dict({
            'documentId': 'doc-1',
            'sourcePath': '/tmp/doc.pdf',
            'jobId': 'job-1',
            'pageId': 'page-2',
        })
        assert request.page_id == 'page-2'


class TestValueTypes:

    def test_text_block_from_dict_without_bbox(self):
        block = TextBlock.from_dict({'text': 'hello', 'confidence': 91.5})
        assert block.text == 'hello'
        assert block.bbox == BoundingBox(0, 0, 0, 0, 0.0)

    def test_document_defaults_and_wire_shape(self):
        document = Document(
            id='abc', file_hash='h', storage_path='/s', original_name='a.pdf',
            media_type='application/pdf', size=10, job_id='j'
        )
        assert document.status == DocumentStatus.PENDING
        assert document.uploaded_at

        data = document.to_dict()
        assert data['originalName'] == 'a.pdf'
        assert data['status'] == 'pending'
        assert data['processedPages'] == 0
