from __future__ import annotations

import hashlib
import itertools
import logging
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional

from .engine import EngineSettings, handle_request

log = logging.getLogger(__name__)


def photo_fingerprint(photo_ids: Iterable[str]) -> str:
    """Identity of an ordered photo set; changes whenever the set does."""
    h = hashlib.sha1()
    for pid in photo_ids:
        h.update(str(pid).encode("utf-8"))
        h.update(b"\x00")
    return h.hexdigest()


@dataclass(frozen=True)
class LayoutTicket:
    request_id: int
    fingerprint: str
    future: Future


class LayoutWorker:
    """Runs layout requests off the calling thread, one at a time.

    Results are keyed by a request id; a ticket whose photo set no longer
    matches the caller's is stale and its result is dropped.
    """

    def __init__(
        self, use_processes: bool = True, settings: Optional[EngineSettings] = None
    ) -> None:
        self.use_processes = use_processes
        self.settings = settings
        self._ids = itertools.count(1)
        self._executor: Optional[Executor] = None

    def _get_executor(self) -> Executor:
        if self._executor is None:
            if self.use_processes:
                self._executor = ProcessPoolExecutor(max_workers=1)
            else:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="layout"
                )
        return self._executor

    def submit(self, request: Mapping[str, Any]) -> LayoutTicket:
        request_id = next(self._ids)
        message: Dict[str, Any] = dict(request)
        message["requestId"] = request_id
        ids = [str(p.get("id")) for p in message.get("photos") or [] if isinstance(p, Mapping)]
        future = self._get_executor().submit(handle_request, message, self.settings)
        log.debug("Submitted layout request %d (%d photos)", request_id, len(ids))
        return LayoutTicket(request_id, photo_fingerprint(ids), future)

    @staticmethod
    def is_stale(ticket: LayoutTicket, photo_ids: Iterable[str]) -> bool:
        return ticket.fingerprint != photo_fingerprint(photo_ids)

    def result(
        self,
        ticket: LayoutTicket,
        photo_ids: Iterable[str],
        timeout: Optional[float] = None,
    ) -> Optional[Dict[str, Any]]:
        """Wait for ``ticket``; None when the photo set changed meanwhile."""
        response = ticket.future.result(timeout=timeout)
        if self.is_stale(ticket, photo_ids):
            log.info("Discarding stale layout response %d", ticket.request_id)
            return None
        if response.get("requestId") != ticket.request_id:
            log.warning(
                "Response id %r does not match request %d",
                response.get("requestId"),
                ticket.request_id,
            )
            return None
        return response

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def __enter__(self) -> "LayoutWorker":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
