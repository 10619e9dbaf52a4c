"""
Progress Broadcaster
Publishes job lifecycle events on a channel scoped by job identifier.

Delivery is best-effort and at-most-once: a failing transport is logged and
never propagates into the pipeline. Persisted document/job state remains the
source of truth.
"""

import json
import logging
import sys
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, TextIO

logger = logging.getLogger(__name__)

PROGRESS = "progress"
COMPLETED = "completed"
FAILED = "failed"

EVENT_NAMES = {
    PROGRESS: "job-progress",
    COMPLETED: "job-completed",
    FAILED: "job-failed",
}

EventCallback = Callable[[str, Dict[str, Any]], None]


def job_topic(job_id: str) -> str:
    """Channel name for a job's events"""
    return f"job-{job_id}"


class ProgressBroadcaster(ABC):
    """Base class for event transports"""

    def publish(self, job_id: str, event_kind: str, payload: Dict[str, Any]) -> bool:
        """
        Publish an event for a job.

        Args:
            job_id: Job the event belongs to
            event_kind: One of progress, completed, failed
            payload: Event body

        Returns:
            True if the transport accepted the event, False otherwise
        """
        if event_kind not in EVENT_NAMES:
            logger.warning(f"Dropping unknown event kind '{event_kind}' for job {job_id}")
            return False

        try:
            self._send(job_topic(job_id), EVENT_NAMES[event_kind], payload)
            return True
        except Exception as e:
            logger.warning(f"Failed to publish {event_kind} event for job {job_id}: {e}")
            return False

    @abstractmethod
    def _send(self, topic: str, event_name: str, payload: Dict[str, Any]) -> None:
        """Deliver one event; may raise"""
        pass

    def progress(self, job_id: str, progress: int, processed_pages: int,
                 total_pages: int, current_page: int) -> bool:
        return self.publish(job_id, PROGRESS, {
            "jobId": job_id,
            "progress": progress,
            "processedPages": processed_pages,
            "totalPages": total_pages,
            "currentPage": current_page,
        })

    def completed(self, job_id: str) -> bool:
        return self.publish(job_id, COMPLETED, {"jobId": job_id})

    def failed(self, job_id: str, error: str) -> bool:
        return self.publish(job_id, FAILED, {"jobId": job_id, "error": error})


class NullBroadcaster(ProgressBroadcaster):
    """Discards every event"""

    def _send(self, topic: str, event_name: str, payload: Dict[str, Any]) -> None:
        pass


class InMemoryPubSub(ProgressBroadcaster):
    """
    In-process publish/subscribe keyed by job.

    Subscribers receive (event_name, payload). A subscriber that raises is
    logged and skipped; the remaining subscribers still get the event.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[EventCallback]] = {}
        self._lock = threading.Lock()

    def subscribe(self, job_id: str, callback: EventCallback) -> Callable[[], None]:
        """
        Register a callback for one job's events.

        Returns:
            Function that removes the subscription
        """
        topic = job_topic(job_id)
        with self._lock:
            self._subscribers.setdefault(topic, []).append(callback)

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(topic, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(topic, None)

        return unsubscribe

    def subscriber_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(job_topic(job_id), []))

    def _send(self, topic: str, event_name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(topic, []))

        for callback in callbacks:
            try:
                callback(event_name, payload)
            except Exception as e:
                logger.warning(f"Subscriber for {topic} failed on {event_name}: {e}")


class StreamPublisher(ProgressBroadcaster):
    """Writes each event as one JSON line (stdout IPC)"""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self._lock = threading.Lock()

    def write(self, event: Dict[str, Any]) -> None:
        """Write one JSON line; shared with command responses on the same stream"""
        line = json.dumps(event)
        with self._lock:
            self.stream.write(line + "\n")
            self.stream.flush()

    def _send(self, topic: str, event_name: str, payload: Dict[str, Any]) -> None:
        self.write({
            "type": event_name,
            "topic": topic,
            "data": payload,
        })
        logger.debug(f"Sent {event_name} event on {topic}")
