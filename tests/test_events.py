"""
Tests for progress broadcasting
"""

import io
import json

from docsearch.events import (
    InMemoryPubSub, NullBroadcaster, ProgressBroadcaster, StreamPublisher, job_topic
)


class BrokenTransport(ProgressBroadcaster):
    def _send(self, topic, event_name, payload):
        raise ConnectionError("socket closed")


class TestInMemoryPubSub:

    def test_progress_event_payload(self, pubsub):
        received = []
        pubsub.subscribe("job-1", lambda name, payload: received.append((name, payload)))

        assert pubsub.progress("job-1", 50, 1, 2, 1) is True
        assert received == [("job-progress", {
            "jobId": "job-1",
            "progress": 50,
            "processedPages": 1,
            "totalPages": 2,
            "currentPage": 1,
        })]

    def test_events_scoped_by_job(self, pubsub):
        received = []
        pubsub.subscribe("job-1", lambda name, payload: received.append(payload["jobId"]))

        pubsub.completed("job-2")
        pubsub.failed("job-1", "boom")

        assert received == ["job-1"]

    def test_unsubscribe(self, pubsub):
        received = []
        unsubscribe = pubsub.subscribe("job-1", lambda *args: received.append(args))
        assert pubsub.subscriber_count("job-1") == 1

        unsubscribe()
        pubsub.completed("job-1")

        assert received == []
        assert pubsub.subscriber_count("job-1") == 0

    def test_failing_subscriber_does_not_block_others(self, pubsub):
        received = []

        def broken(name, payload):
            raise RuntimeError("subscriber crashed")

        pubsub.subscribe("job-1", broken)
        pubsub.subscribe("job-1", lambda name, payload: received.append(name))

        assert pubsub.failed("job-1", "bad page") is True
        assert received == ["job-failed"]


class TestBestEffortDelivery:

    def test_transport_error_is_swallowed(self):
        assert BrokenTransport().completed("job-1") is False

    def test_unknown_event_kind_dropped(self):
        assert NullBroadcaster().publish("job-1", "paused", {}) is False

    def test_null_broadcaster_accepts_everything(self):
        assert NullBroadcaster().progress("job-1", 10, 1, 10, 1) is True


class TestStreamPublisher:

    def test_writes_one_json_line_per_event(self):
        stream = io.StringIO()
        publisher = StreamPublisher(stream)

        publisher.failed("abc", "cannot open")
        publisher.completed("abc")

        lines = stream.getvalue().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first == {
            "type": "job-failed",
            "topic": job_topic("abc"),
            "data": {"jobId": "abc", "error": "cannot open"},
        }
        assert json.loads(lines[1])["type"] == "job-completed"

    def test_topic_name(self):
        assert job_topic("123") == "job-123"
