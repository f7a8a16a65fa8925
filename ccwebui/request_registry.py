"""Registry of cancellation handles for in-flight streaming requests."""
from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol

logger = logging.getLogger("ccwebui.chat")


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class RequestRegistry:
    """Maps request ids to cancellation handles.

    Each registered entry is removed exactly once, by whichever of
    :meth:`abort` or :meth:`complete` runs first. Sync route handlers run
    on a worker thread pool, so every lookup-and-remove happens under one
    lock.
    """

    def __init__(self) -> None:
        self._handles: dict[str, Cancellable] = {}
        self._lock = threading.Lock()

    def register(self, request_id: str, handle: Cancellable) -> None:
        with self._lock:
            replaced = self._handles.get(request_id)
            self._handles[request_id] = handle
        if replaced is not None and replaced is not handle:
            logger.warning("Request %s was already registered; replacing its handle", request_id)
        logger.debug("Registered request %s", request_id)

    def abort(self, request_id: str) -> bool:
        """Cancel and forget ``request_id``. Returns False if it is unknown."""
        with self._lock:
            handle = self._handles.pop(request_id, None)
        if handle is None:
            return False
        handle.cancel()
        logger.info("Aborted request %s", request_id)
        return True

    def complete(self, request_id: str, handle: Optional[Cancellable] = None) -> bool:
        """Forget ``request_id`` after it finished. Idempotent.

        When ``handle`` is given the entry is only removed if it still maps
        to that handle, so a finished stream cannot drop a newer
        registration under the same id.
        """
        with self._lock:
            current = self._handles.get(request_id)
            if current is None:
                return False
            if handle is not None and current is not handle:
                return False
            del self._handles[request_id]
        logger.debug("Completed request %s", request_id)
        return True

    def has(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._handles

    def request_ids(self) -> list[str]:
        with self._lock:
            return list(self._handles)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
