"""
Per-document exclusive leases.

A job must hold its document's lease before it mutates the document's pages.
The lease is taken when a job is enqueued and released when the job reaches
a terminal state, so a second job for the same document is rejected while
one is waiting or running.
"""

import logging
import threading
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class DocumentLeaseRegistry:
    """Thread-safe map of document id -> owning job id"""

    def __init__(self):
        self._holders: Dict[str, str] = {}
        self._lock = threading.Lock()

    def acquire(self, document_id: str, owner: str) -> bool:
        """
        Take the lease for a document.

        Returns:
            True if the lease was free or is already held by owner
        """
        with self._lock:
            holder = self._holders.get(document_id)
            if holder is None:
                self._holders[document_id] = owner
                logger.debug(f"Lease on {document_id[:8]}... acquired by {owner}")
                return True
            return holder == owner

    def release(self, document_id: str, owner: str) -> bool:
        """
        Give the lease back. Only the current holder can release it.

        Returns:
            True if the lease was released
        """
        with self._lock:
            if self._holders.get(document_id) != owner:
                return False
            del self._holders[document_id]
            logger.debug(f"Lease on {document_id[:8]}... released by {owner}")
            return True

    def holder(self, document_id: str) -> Optional[str]:
        with self._lock:
            return self._holders.get(document_id)

    def is_held(self, document_id: str) -> bool:
        return self.holder(document_id) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._holders)
