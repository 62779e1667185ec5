"""Routes JSON-RPC responses back to the coroutine waiting on each request id."""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    id: int
    method: str
    future: asyncio.Future
    created_at: float = field(default_factory=time.monotonic)


class Correlator:
    def __init__(self) -> None:
        self._counter = 0
        self._pending: dict[int, PendingRequest] = {}
        self._closed_error: BaseException | None = None

    def next_id(self) -> int:
        # No await between read and increment, so allocation is atomic on the loop.
        self._counter += 1
        return self._counter

    def register(self, req_id: int, method: str = "") -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        if self._closed_error is not None:
            future.set_exception(_fresh_error(self._closed_error))
            return future
        if req_id in self._pending:
            raise ValueError(f"Request id {req_id} is already pending")
        self._pending[req_id] = PendingRequest(id=req_id, method=method, future=future)
        return future

    def resolve(self, req_id: Any, message: Any) -> bool:
        key = _normalize_id(req_id)
        pending = self._pending.pop(key, None) if key is not None else None
        if pending is None:
            logger.debug("Dropping response for unknown request id %r", req_id)
            return False
        if not pending.future.done():
            pending.future.set_result(message)
        return True

    def discard(self, req_id: int) -> None:
        pending = self._pending.pop(req_id, None)
        if pending is not None and not pending.future.done():
            pending.future.cancel()

    def fail_all(self, error: BaseException, *, close: bool = True) -> int:
        """Fail every pending request with `error`; when `close`, later registrations fail too."""
        if close and self._closed_error is None:
            self._closed_error = error
        pending = list(self._pending.values())
        self._pending.clear()
        for item in pending:
            if not item.future.done():
                item.future.set_exception(_fresh_error(error))
                # Mark retrieved so abandoned futures do not log "exception never retrieved".
                item.future.exception()
        if pending:
            logger.debug("Failed %d pending request(s): %s", len(pending), error)
        return len(pending)

    def pending_ids(self) -> list[int]:
        return list(self._pending.keys())

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed_error is not None


def _fresh_error(error: BaseException) -> BaseException:
    # One instance per waiter so each awaiting task gets its own traceback.
    try:
        return copy.copy(error)
    except TypeError:
        return error


def _normalize_id(req_id: Any) -> int | None:
    if isinstance(req_id, bool):
        return None
    if isinstance(req_id, int):
        return req_id
    if isinstance(req_id, str) and req_id.isdigit():
        return int(req_id)
    return None
