"""Durable queue of skin analyses submitted while offline, replayed on reconnect."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Protocol

from triage_ai.models import TriageResult

from .connectivity import ConnectivityMonitor
from .local_storage import LocalStorage

LOGGER = logging.getLogger(__name__)

ANALYSIS_QUEUE_KEY = "analysisQueue"
ANALYSIS_RESULTS_KEY = "analysisResults"


@dataclass(frozen=True)
class QueuedAnalysisRequest:
    id: str
    payload: dict[str, Any]
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "payload": self.payload, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "QueuedAnalysisRequest":
        return cls(id=str(raw["id"]), payload=dict(raw.get("payload") or {}), timestamp=float(raw.get("timestamp") or 0))


def analysis_payload(
    image_data: str,
    mime_type: str,
    language: str,
    mcq_answers: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "base64ImageData": image_data,
        "mimeType": mime_type,
        "language": language,
        "mcqAnswers": dict(mcq_answers or {}),
    }


QueueMutation = Callable[[list[QueuedAnalysisRequest]], list[QueuedAnalysisRequest]]


class QueueStore(Protocol):
    def load(self) -> list[QueuedAnalysisRequest]: ...

    def save_all(self, requests: list[QueuedAnalysisRequest]) -> None: ...

    def update(self, mutate: QueueMutation) -> list[QueuedAnalysisRequest]:
        """Apply ``mutate`` to the stored queue as one atomic read-modify-write."""
        ...


class LocalQueueStore:
    def __init__(self, storage: LocalStorage, key: str = ANALYSIS_QUEUE_KEY) -> None:
        self._storage = storage
        self._key = key

    def load(self) -> list[QueuedAnalysisRequest]:
        return self._decode(self._storage.get(self._key, []))

    @staticmethod
    def _decode(raw: Any) -> list[QueuedAnalysisRequest]:
        if not isinstance(raw, list):
            LOGGER.error("Analysis queue in local storage is not a list; ignoring it")
            return []
        requests: list[QueuedAnalysisRequest] = []
        for item in raw:
            try:
                requests.append(QueuedAnalysisRequest.from_dict(item))
            except (KeyError, TypeError, ValueError):
                LOGGER.error("Skipping malformed queued request: %r", item)
        return requests

    def save_all(self, requests: list[QueuedAnalysisRequest]) -> None:
        self._storage.set(self._key, [request.to_dict() for request in requests])

    def update(self, mutate: QueueMutation) -> list[QueuedAnalysisRequest]:
        stored = self._storage.update(
            self._key,
            lambda raw: [request.to_dict() for request in mutate(self._decode(raw))],
            default=[],
        )
        return self._decode(stored)


class ResultStore:
    """Completed offline results awaiting review, consumed oldest first."""

    def __init__(self, storage: LocalStorage, key: str = ANALYSIS_RESULTS_KEY) -> None:
        self._storage = storage
        self._key = key

    def load(self) -> list[TriageResult]:
        raw = self._storage.get(self._key, [])
        if not isinstance(raw, list):
            return []
        return [TriageResult.model_validate(item) for item in raw]

    def append(self, result: TriageResult) -> int:
        stored = self._storage.update(
            self._key,
            lambda current: (current if isinstance(current, list) else []) + [result.to_wire()],
            default=[],
        )
        return len(stored)

    def peek_oldest(self) -> TriageResult | None:
        results = self.load()
        return results[0] if results else None

    def pop_oldest(self) -> TriageResult | None:
        popped: list[Any] = []

        def _pop(current: Any) -> list[Any]:
            items = current if isinstance(current, list) else []
            if items:
                popped.append(items[0])
            return items[1:]

        self._storage.update(self._key, _pop, default=[])
        return TriageResult.model_validate(popped[0]) if popped else None

    def count(self) -> int:
        return len(self.load())

    def clear(self) -> None:
        self._storage.remove(self._key)


@dataclass(frozen=True)
class ReplaySummary:
    processed: int = 0
    failed: int = 0
    remaining: int = 0
    failed_ids: tuple[str, ...] = field(default_factory=tuple)


Submitter = Callable[[Mapping[str, Any]], TriageResult]
ReplayListener = Callable[[ReplaySummary], None]


class OfflineAnalysisQueue:
    """Order-preserving, at-least-once delivery of queued analyses.

    Entries leave the queue only after the remote call succeeded and its
    result was stored. A crash between those two writes replays the entry
    on the next pass.
    """

    def __init__(
        self,
        queue_store: QueueStore,
        results: ResultStore,
        submit: Submitter,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.queue_store = queue_store
        self.results = results
        self._submit = submit
        self._clock = clock
        self._listeners: list[ReplayListener] = []
        self._replay_lock = threading.Lock()

    def add_listener(self, listener: ReplayListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ReplayListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def enqueue(self, payload: Mapping[str, Any]) -> QueuedAnalysisRequest:
        request = QueuedAnalysisRequest(
            id=f"req_{uuid.uuid4().hex}",
            payload=dict(payload),
            timestamp=self._clock(),
        )
        self.queue_store.update(lambda current: current + [request])
        LOGGER.info("Queued analysis request %s for offline processing", request.id)
        return request

    def pending(self) -> list[QueuedAnalysisRequest]:
        return self.queue_store.load()

    def pending_count(self) -> int:
        return len(self.queue_store.load())

    def _remove(self, request_id: str) -> None:
        self.queue_store.update(lambda current: [request for request in current if request.id != request_id])

    def replay(self) -> ReplaySummary | None:
        """Run one sequential pass. Returns None if a pass is already running."""
        if not self._replay_lock.acquire(blocking=False):
            LOGGER.info("Queue replay already in progress; skipping trigger")
            return None
        try:
            snapshot = self.queue_store.load()
            if not snapshot:
                return ReplaySummary()
            LOGGER.info("Processing %d items from the offline analysis queue", len(snapshot))

            processed = 0
            failed_ids: list[str] = []
            for request in snapshot:
                try:
                    result = self._submit(request.payload)
                except Exception as exc:
                    LOGGER.error("Failed to process queued request %s: %s", request.id, exc)
                    failed_ids.append(request.id)
                    continue
                self.results.append(result)
                self._remove(request.id)
                processed += 1

            summary = ReplaySummary(
                processed=processed,
                failed=len(failed_ids),
                remaining=self.pending_count(),
                failed_ids=tuple(failed_ids),
            )
        finally:
            self._replay_lock.release()

        self._notify(summary)
        return summary

    def _notify(self, summary: ReplaySummary) -> None:
        for listener in list(self._listeners):
            try:
                listener(summary)
            except Exception:
                LOGGER.exception("Queue replay listener failed")

    def clear(self) -> None:
        self.queue_store.save_all([])
        self.results.clear()

    def attach(self, connectivity: ConnectivityMonitor) -> None:
        """Replay on every reconnect, and right away if already online."""
        connectivity.add_reconnect_listener(self.replay)
        if connectivity.is_online:
            self.replay()
