"""Tests for the reader/writer lock."""

import threading
import time

from taskstore.storage.locking import ReadWriteLock

TIMEOUT = 5.0


def test_readers_share_the_lock():
    lock = ReadWriteLock()
    both_inside = threading.Barrier(2, timeout=TIMEOUT)
    errors = []

    def reader():
        try:
            with lock.read_locked():
                both_inside.wait()
        except threading.BrokenBarrierError as e:
            errors.append(e)

    threads = [threading.Thread(target=reader) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(TIMEOUT)

    assert errors == []
    assert lock.readers == 0


def test_writer_waits_for_readers():
    lock = ReadWriteLock()
    writer_done = threading.Event()

    lock.acquire_read()

    def writer():
        with lock.write_locked():
            writer_done.set()

    thread = threading.Thread(target=writer)
    thread.start()

    assert not writer_done.wait(0.1)
    lock.release_read()
    assert writer_done.wait(TIMEOUT)
    thread.join(TIMEOUT)
    assert not lock.writing


def test_writer_excludes_readers():
    lock = ReadWriteLock()
    reader_done = threading.Event()

    lock.acquire_write()
    assert lock.writing

    def reader():
        with lock.read_locked():
            reader_done.set()

    thread = threading.Thread(target=reader)
    thread.start()

    assert not reader_done.wait(0.1)
    lock.release_write()
    assert reader_done.wait(TIMEOUT)
    thread.join(TIMEOUT)


def test_waiting_writer_blocks_new_readers():
    lock = ReadWriteLock()
    order = []
    second_reader_started = threading.Event()

    lock.acquire_read()

    def writer():
        with lock.write_locked():
            order.append("writer")

    def late_reader():
        second_reader_started.set()
        with lock.read_locked():
            order.append("reader")

    writer_thread = threading.Thread(target=writer)
    writer_thread.start()
    while lock._writers_waiting == 0:
        time.sleep(0.01)

    reader_thread = threading.Thread(target=late_reader)
    reader_thread.start()
    second_reader_started.wait(TIMEOUT)
    time.sleep(0.05)

    lock.release_read()
    writer_thread.join(TIMEOUT)
    reader_thread.join(TIMEOUT)

    assert order == ["writer", "reader"]


def test_lock_released_on_exception():
    lock = ReadWriteLock()

    try:
        with lock.write_locked():
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    assert not lock.writing
    with lock.read_locked():
        assert lock.readers == 1
