from __future__ import annotations

import threading

import httpx
import pytest

from triage_ai import RateLimited, TriageResult
from triage_client import (
    ANALYSIS_QUEUE_KEY,
    ConnectivityMonitor,
    LocalQueueStore,
    LocalStorage,
    OfflineAnalysisQueue,
    ReplaySummary,
    ResultStore,
    analysis_payload,
    http_probe,
)


def _result(label: str) -> TriageResult:
    return TriageResult(conclusion="MILD", explanation=f"result for {label}", self_care_tips=("Rest",))


class _RecordingSubmitter:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.seen: list[str] = []

    def __call__(self, payload) -> TriageResult:
        label = payload["base64ImageData"]
        self.seen.append(label)
        if label in self.failing:
            raise RateLimited()
        return _result(label)


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(str(tmp_path / "device.sqlite"))


def _queue(storage: LocalStorage, submit) -> OfflineAnalysisQueue:
    return OfflineAnalysisQueue(LocalQueueStore(storage), ResultStore(storage), submit, clock=lambda: 1_700_000_000.0)


def _payload(label: str) -> dict:
    return analysis_payload(label, "image/jpeg", "en", {"Does it itch?": "Yes"})


def test_enqueue_is_durable_across_restarts(tmp_path):
    path = str(tmp_path / "device.sqlite")
    queued = _queue(LocalStorage(path), _RecordingSubmitter()).enqueue(_payload("A"))

    assert queued.id.startswith("req_")
    assert queued.timestamp == 1_700_000_000.0

    reopened = _queue(LocalStorage(path), _RecordingSubmitter())
    pending = reopened.pending()
    assert [request.id for request in pending] == [queued.id]
    assert pending[0].payload == {
        "base64ImageData": "A",
        "mimeType": "image/jpeg",
        "language": "en",
        "mcqAnswers": {"Does it itch?": "Yes"},
    }


def test_replay_is_fifo_and_keeps_failures(storage):
    submit = _RecordingSubmitter(failing={"B"})
    queue = _queue(storage, submit)
    first, second, third = (queue.enqueue(_payload(label)) for label in "ABC")

    summary = queue.replay()

    assert submit.seen == ["A", "B", "C"]
    assert summary == ReplaySummary(processed=2, failed=1, remaining=1, failed_ids=(second.id,))
    assert [request.id for request in queue.pending()] == [second.id]
    assert [result.explanation for result in queue.results.load()] == ["result for A", "result for C"]

    submit.failing.clear()
    retry = queue.replay()
    assert retry.processed == 1
    assert retry.remaining == 0
    assert queue.results.count() == 3
    assert first.id != third.id


def test_listeners_are_notified_after_each_non_empty_pass(storage):
    queue = _queue(storage, _RecordingSubmitter())
    summaries: list[ReplaySummary] = []
    queue.add_listener(summaries.append)

    assert queue.replay() == ReplaySummary()
    assert summaries == []

    queue.enqueue(_payload("A"))
    queue.replay()
    assert summaries == [ReplaySummary(processed=1, failed=0, remaining=0)]

    queue.remove_listener(summaries.append)
    queue.enqueue(_payload("B"))
    queue.replay()
    assert len(summaries) == 1


def test_broken_listener_does_not_stop_others(storage):
    queue = _queue(storage, _RecordingSubmitter())
    calls: list[int] = []

    def _broken(summary):
        raise RuntimeError("listener bug")

    queue.add_listener(_broken)
    queue.add_listener(lambda summary: calls.append(summary.processed))
    queue.enqueue(_payload("A"))

    queue.replay()
    assert calls == [1]


def test_concurrent_trigger_is_a_no_op(storage):
    started = threading.Event()
    release = threading.Event()
    seen: list[str] = []

    def _slow_submit(payload):
        seen.append(payload["base64ImageData"])
        started.set()
        assert release.wait(5)
        return _result(payload["base64ImageData"])

    queue = _queue(storage, _slow_submit)
    queue.enqueue(_payload("A"))
    outcome: dict = {}
    worker = threading.Thread(target=lambda: outcome.setdefault("summary", queue.replay()))
    worker.start()
    assert started.wait(5)

    assert queue.replay() is None

    release.set()
    worker.join(5)
    assert outcome["summary"].processed == 1
    assert seen == ["A"]
    assert queue.results.count() == 1


def test_crash_before_removal_redelivers(storage, monkeypatch):
    submit = _RecordingSubmitter()
    queue = _queue(storage, submit)
    queue.enqueue(_payload("A"))

    def _crash(request_id):
        raise RuntimeError("process killed")

    monkeypatch.setattr(queue, "_remove", _crash)
    with pytest.raises(RuntimeError):
        queue.replay()
    assert queue.pending_count() == 1
    assert queue.results.count() == 1

    monkeypatch.undo()
    queue.replay()
    assert submit.seen == ["A", "A"]
    assert queue.pending_count() == 0
    assert queue.results.count() == 2


def test_enqueues_from_separate_storage_handles_are_all_kept(tmp_path):
    path = str(tmp_path / "device.sqlite")
    queues = [_queue(LocalStorage(path), _RecordingSubmitter()) for _ in range(4)]
    barrier = threading.Barrier(len(queues))

    def _enqueue_many(queue, worker):
        barrier.wait(5)
        for index in range(10):
            queue.enqueue(_payload(f"{worker}-{index}"))

    workers = [
        threading.Thread(target=_enqueue_many, args=(queue, worker)) for worker, queue in enumerate(queues)
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(30)

    pending = _queue(LocalStorage(path), _RecordingSubmitter()).pending()
    assert len(pending) == 40
    assert {request.payload["base64ImageData"] for request in pending} == {
        f"{worker}-{index}" for worker in range(4) for index in range(10)
    }


def test_removal_keeps_requests_enqueued_through_another_handle(tmp_path):
    path = str(tmp_path / "device.sqlite")
    other = _queue(LocalStorage(path), _RecordingSubmitter())

    def _submit_and_enqueue_elsewhere(payload):
        other.enqueue(_payload("B"))
        return _result(payload["base64ImageData"])

    replaying = _queue(LocalStorage(path), _submit_and_enqueue_elsewhere)
    replaying.enqueue(_payload("A"))
    replaying.replay()

    assert [request.payload["base64ImageData"] for request in replaying.pending()] == ["B"]


def test_results_are_consumed_oldest_first(storage):
    results = ResultStore(storage)
    results.append(_result("first"))
    results.append(_result("second"))

    assert results.peek_oldest().explanation == "result for first"
    assert results.pop_oldest().explanation == "result for first"
    assert results.pop_oldest().explanation == "result for second"
    assert results.pop_oldest() is None


def test_clear_empties_queue_and_results(storage):
    queue = _queue(storage, _RecordingSubmitter(failing={"B"}))
    queue.enqueue(_payload("A"))
    queue.enqueue(_payload("B"))
    queue.replay()

    queue.clear()
    assert queue.pending_count() == 0
    assert queue.results.count() == 0


def test_malformed_queue_document_is_ignored(storage):
    storage.set(ANALYSIS_QUEUE_KEY, {"not": "a list"})
    queue = _queue(storage, _RecordingSubmitter())
    assert queue.pending() == []

    storage.set(ANALYSIS_QUEUE_KEY, [{"payload": {}}, {"id": "req_ok", "payload": {"base64ImageData": "A"}}])
    assert [request.id for request in queue.pending()] == ["req_ok"]


def test_reconnect_triggers_replay_once_per_edge(storage):
    submit = _RecordingSubmitter()
    queue = _queue(storage, submit)
    connectivity = ConnectivityMonitor(online=False)
    queue.enqueue(_payload("A"))

    queue.attach(connectivity)
    assert submit.seen == []

    assert connectivity.set_online(True) is True
    assert submit.seen == ["A"]

    queue.enqueue(_payload("B"))
    assert connectivity.set_online(True) is False
    assert submit.seen == ["A"]

    connectivity.set_online(False)
    connectivity.set_online(True)
    assert submit.seen == ["A", "B"]


def test_attach_while_online_replays_immediately(storage):
    submit = _RecordingSubmitter()
    queue = _queue(storage, submit)
    queue.enqueue(_payload("A"))

    queue.attach(ConnectivityMonitor(online=True))
    assert submit.seen == ["A"]
    assert queue.pending_count() == 0


def test_connectivity_probe_drives_refresh():
    answers = iter([False, True])
    connectivity = ConnectivityMonitor(online=True, probe=lambda: next(answers))
    reconnects: list[bool] = []
    connectivity.add_reconnect_listener(lambda: reconnects.append(True))

    assert connectivity.refresh() is False
    assert connectivity.refresh() is True
    assert reconnects == [True]


def test_removed_reconnect_listener_is_not_called():
    connectivity = ConnectivityMonitor(online=False)
    calls: list[bool] = []

    def _listener():
        calls.append(True)

    connectivity.add_reconnect_listener(_listener)
    connectivity.remove_reconnect_listener(_listener)
    connectivity.set_online(True)
    assert calls == []


def test_http_probe_treats_server_errors_and_transport_failures_as_offline(monkeypatch):
    responses = iter(
        [
            httpx.Response(200, json={"ok": True}),
            httpx.Response(503),
            httpx.ConnectError("offline"),
        ]
    )
    seen: list[str] = []

    def fake_get(url, timeout):
        seen.append(url)
        outcome = next(responses)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(httpx, "get", fake_get)
    probe = http_probe("http://triage.test/api/health")

    assert [probe(), probe(), probe()] == [True, False, False]
    assert seen == ["http://triage.test/api/health"] * 3
