"""Unit tests for StatusStore and ReaderWriterLock."""

import threading
import time

import pytest

from platconf.api.models import StatusUpdate
from platconf.models.status import StatusRecord
from platconf.services.status_store import StatusStore
from platconf.utils.rwlock import ReaderWriterLock


@pytest.mark.unit
class TestStatusStore:
    """Test StatusStore in isolation."""

    def test_initial_record_is_empty(self, status_store):
        assert status_store.snapshot() == StatusRecord(status="", progress=None, what=None)

    def test_initial_record_from_constructor(self):
        store = StatusStore(StatusRecord(status="done", progress=100.0))

        assert store.snapshot().status == "done"
        assert store.snapshot().progress == 100.0

    def test_set_replaces_all_fields(self, status_store):
        status_store.set("pulling", 50.0, "quay.io/a/b:1")
        status_store.set("finalizing")

        record = status_store.snapshot()
        assert record.status == "finalizing"
        assert record.progress is None
        assert record.what is None

    def test_snapshot_is_a_copy(self, status_store):
        status_store.set("preparing")
        before = status_store.snapshot()

        status_store.set("done", 100.0)

        assert before.status == "preparing"

    def test_replace(self, status_store):
        status_store.set("pulling", 10.0, "x")

        status_store.replace(StatusRecord(status="done"))

        assert status_store.snapshot() == StatusRecord(status="done")

    def test_merge_only_present_fields(self, status_store):
        status_store.set("pulling", 10.0, "quay.io/a/b:1")

        status_store.merge(StatusUpdate.model_validate_json('{"progress": 20.5}'))

        record = status_store.snapshot()
        assert record.status == "pulling"
        assert record.progress == 20.5
        assert record.what == "quay.io/a/b:1"

    def test_merge_explicit_null_clears(self, status_store):
        status_store.set("pulling", 10.0, "quay.io/a/b:1")

        status_store.merge(StatusUpdate.model_validate_json('{"what": null, "status": null}'))

        record = status_store.snapshot()
        assert record.status == ""
        assert record.progress == 10.0
        assert record.what is None

    def test_merge_empty_update_changes_nothing(self, status_store):
        status_store.set("done", 100.0, "all good")

        status_store.merge(StatusUpdate.model_validate_json("{}"))

        assert status_store.snapshot() == StatusRecord(
            status="done", progress=100.0, what="all good"
        )

    def test_readers_never_see_partial_writes(self, status_store):
        """Every snapshot matches one of the complete records written."""
        stop = threading.Event()
        torn = []

        def writer():
            i = 0
            while not stop.is_set():
                # status, progress and what always agree on i
                status_store.set(f"s{i}", float(i), f"w{i}")
                i += 1

        def reader():
            while not stop.is_set():
                record = status_store.snapshot()
                if record.status == "":
                    continue
                i = record.status[1:]
                if record.progress != float(i) or record.what != f"w{i}":
                    torn.append(record)

        threads = [threading.Thread(target=writer) for _ in range(2)]
        threads += [threading.Thread(target=reader) for _ in range(4)]
        for thread in threads:
            thread.start()
        time.sleep(0.3)
        stop.set()
        for thread in threads:
            thread.join(timeout=5)

        assert torn == []


@pytest.mark.unit
class TestReaderWriterLock:
    """Test ReaderWriterLock in isolation."""

    def test_readers_share(self):
        lock = ReaderWriterLock()
        lock.acquire_read()
        acquired = threading.Event()

        def second_reader():
            with lock.read_locked():
                acquired.set()

        thread = threading.Thread(target=second_reader)
        thread.start()

        assert acquired.wait(timeout=2)
        thread.join()
        lock.release_read()

    def test_writer_excludes_readers(self):
        lock = ReaderWriterLock()
        lock.acquire_write()
        acquired = threading.Event()

        def reader():
            with lock.read_locked():
                acquired.set()

        thread = threading.Thread(target=reader)
        thread.start()

        assert not acquired.wait(timeout=0.1)
        lock.release_write()
        assert acquired.wait(timeout=2)
        thread.join()

    def test_waiting_writer_blocks_new_readers(self):
        lock = ReaderWriterLock()
        lock.acquire_read()
        order = []

        def writer():
            with lock.write_locked():
                order.append("writer")

        def late_reader():
            with lock.read_locked():
                order.append("reader")

        writer_thread = threading.Thread(target=writer)
        writer_thread.start()
        time.sleep(0.05)
        reader_thread = threading.Thread(target=late_reader)
        reader_thread.start()
        time.sleep(0.05)

        assert order == []
        lock.release_read()
        writer_thread.join(timeout=2)
        reader_thread.join(timeout=2)

        assert order == ["writer", "reader"]

    def test_release_without_acquire(self):
        lock = ReaderWriterLock()

        with pytest.raises(RuntimeError):
            lock.release_read()
        with pytest.raises(RuntimeError):
            lock.release_write()
