"""Per-room mutual exclusion for booking mutations."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator

from .errors import RoomBusy

logger = logging.getLogger(__name__)


class RoomLockRegistry:
    """Hands out one lock per room so check-then-write sequences never interleave.

    Different rooms never wait on each other. Acquisition is bounded by
    ``timeout``; callers that give up get ``RoomBusy``.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, room_id: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(room_id)
            if lock is None:
                lock = self._locks[room_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, room_id: Hashable, timeout: float | None = None) -> Iterator[None]:
        lock = self._lock_for(room_id)
        wait = self.timeout if timeout is None else timeout
        if not lock.acquire(timeout=wait):
            logger.warning("Timed out after %.1fs waiting for room %s", wait, room_id)
            raise RoomBusy(room_id)
        try:
            yield
        finally:
            lock.release()

    def is_held(self, room_id: Hashable) -> bool:
        return self._lock_for(room_id).locked()

    def __len__(self) -> int:
        return len(self._locks)
