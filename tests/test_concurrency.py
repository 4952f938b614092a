"""
Tests for concurrency primitives: fan-out groups, the reader/writer lock,
cancellation tokens, and concurrent use of the stores.
"""

import threading
import time

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.cancellation import CancellationToken, run_with_cancellation
from core.errors import EmbeddingCancelled, SubtaskTimeout
from core.fanout import run_parallel
from core.locks import ReadWriteLock
from search.documents import Chunk
from search.embeddings import HashingEmbeddingProvider
from search.hybrid_search import HybridSearcher
from search.vector_store import VectorStore
from tests.fixtures.sample_data import FAST_RETRY, TOPIC_DOCS, VECTORDB_QUERY


class TestRunParallel:
    """Tests for fan-out / fan-in groups."""

    def test_returns_mapping(self):
        """Outcomes are keyed by task name in submission order."""
        outcomes = run_parallel({"a": lambda: 1, "b": lambda: "two"})

        assert list(outcomes) == ["a", "b"]
        assert outcomes["a"].ok and outcomes["a"].value == 1
        assert outcomes["b"].value == "two"

    def test_runs_concurrently(self):
        """Tasks in a group run at the same time."""
        barrier = threading.Barrier(2, timeout=2)

        def task():
            barrier.wait()
            return True

        outcomes = run_parallel({"x": task, "y": task})
        assert all(o.ok for o in outcomes.values())

    def test_errors_are_captured(self):
        """A failing task is captured without affecting the others."""
        def broken():
            raise ValueError("bad input")

        outcomes = run_parallel({"ok": lambda: 1, "broken": broken})

        assert outcomes["ok"].ok
        assert not outcomes["broken"].ok
        assert isinstance(outcomes["broken"].error, ValueError)

    def test_shared_timeout(self):
        """Tasks still running at the deadline report SubtaskTimeout."""
        release = threading.Event()
        outcomes = run_parallel({
            "fast": lambda: "done",
            "slow": lambda: release.wait(5),
        }, timeout=0.1)
        release.set()

        assert outcomes["fast"].value == "done"
        assert isinstance(outcomes["slow"].error, SubtaskTimeout)

    def test_durations_recorded(self):
        """Each outcome records how long its task took."""
        outcomes = run_parallel({"sleep": lambda: time.sleep(0.05)})
        assert outcomes["sleep"].duration_ms >= 40

    def test_empty_group(self):
        """An empty group returns an empty mapping."""
        assert run_parallel({}) == {}


class TestReadWriteLock:
    """Tests for the reader/writer lock."""

    def test_readers_share(self):
        """Several readers hold the lock at once."""
        lock = ReadWriteLock()
        inside = threading.Barrier(3, timeout=2)

        def reader():
            with lock.read_locked():
                inside.wait()

        threads = [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(2)

        assert not any(t.is_alive() for t in threads)

    def test_writer_excludes_readers(self):
        """A reader waits for the writer to finish."""
        lock = ReadWriteLock()
        events = []
        lock.acquire_write()

        def reader():
            with lock.read_locked():
                events.append("read")

        thread = threading.Thread(target=reader)
        thread.start()
        time.sleep(0.05)
        events.append("write-done")
        lock.release_write()
        thread.join(2)

        assert events == ["write-done", "read"]

    def test_waiting_writer_blocks_new_readers(self):
        """A queued writer goes before readers that arrive later."""
        lock = ReadWriteLock()
        events = []
        lock.acquire_read()

        def writer():
            with lock.write_locked():
                events.append("write")

        def late_reader():
            with lock.read_locked():
                events.append("late-read")

        w = threading.Thread(target=writer)
        w.start()
        time.sleep(0.05)
        r = threading.Thread(target=late_reader)
        r.start()
        time.sleep(0.05)
        lock.release_read()
        w.join(2)
        r.join(2)

        assert events == ["write", "late-read"]


class TestCancellation:
    """Tests for cancellation tokens."""

    def test_inline_without_token(self):
        """Without a token the call runs inline."""
        assert run_with_cancellation(lambda: 42, None) == 42

    def test_completes_before_deadline(self):
        """A call that beats the deadline returns its value."""
        token = CancellationToken.with_timeout(5)
        assert run_with_cancellation(lambda: "ok", token) == "ok"

    def test_deadline(self):
        """An expired deadline raises EmbeddingCancelled."""
        token = CancellationToken.with_timeout(0.05)
        with pytest.raises(EmbeddingCancelled) as exc:
            run_with_cancellation(lambda: time.sleep(1), token, provider="slow")

        assert exc.value.provider == "slow"
        assert not exc.value.retryable
        assert token.expired

    def test_cancel_from_other_thread(self):
        """Cancelling from another thread stops the wait promptly."""
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()

        started = time.monotonic()
        with pytest.raises(EmbeddingCancelled):
            run_with_cancellation(lambda: time.sleep(2), token)
        assert time.monotonic() - started < 1.5

    def test_already_cancelled(self):
        """A cancelled token never starts the call."""
        token = CancellationToken()
        token.cancel()
        called = []

        with pytest.raises(EmbeddingCancelled):
            run_with_cancellation(lambda: called.append(1), token)
        assert called == []

    def test_remaining(self):
        """remaining() reports the time left before the deadline."""
        assert CancellationToken().remaining() is None
        assert 0 < CancellationToken.with_timeout(10).remaining() <= 10

    def test_errors_propagate(self):
        """Errors from the call propagate unchanged."""
        def broken():
            raise RuntimeError("provider crashed")

        with pytest.raises(RuntimeError):
            run_with_cancellation(broken, CancellationToken.with_timeout(5))


class TestConcurrentStores:
    """Readers and writers interleaving on a live searcher."""

    def test_searches_during_ingestion(self):
        """Searches stay consistent while batches are ingested."""
        store = VectorStore(HashingEmbeddingProvider({"dimension": 128}), FAST_RETRY)
        searcher = HybridSearcher(store)
        searcher.add_documents(TOPIC_DOCS)
        errors = []

        def ingest():
            try:
                for batch in range(10):
                    searcher.add_documents([
                        Chunk.create(f"extra-{batch}-{i}", f"filler text number {i}")
                        for i in range(5)
                    ])
            except Exception as e:
                errors.append(e)

        def query():
            try:
                for _ in range(20):
                    results = searcher.hybrid_search(VECTORDB_QUERY, k=3, vector_weight=0.5)
                    assert results[0].document_id == "vectordb"
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=ingest)] + [threading.Thread(target=query) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(30)

        assert errors == []
        assert len(store) == 4 + 50
        assert len(searcher.keyword_index) == 4 + 50
