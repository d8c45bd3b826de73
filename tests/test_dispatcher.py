import threading
import time

import pytest

from chatsync.conversations.dispatcher import ConversationDispatcher


@pytest.fixture
def dispatcher():
    pool = ConversationDispatcher(max_workers=4)
    yield pool
    pool.shutdown()


def test_tasks_for_one_key_run_in_submission_order(dispatcher):
    seen = []

    def record(value):
        time.sleep(0.001 * (5 - value))
        seen.append(value)
        return value

    futures = [dispatcher.submit("+551100000001", record, i) for i in range(5)]
    assert [f.result(timeout=5) for f in futures] == [0, 1, 2, 3, 4]
    assert seen == [0, 1, 2, 3, 4]


def test_tasks_for_one_key_never_overlap(dispatcher):
    running = []
    overlaps = []
    lock = threading.Lock()

    def task():
        with lock:
            if running:
                overlaps.append(True)
            running.append(1)
        time.sleep(0.005)
        with lock:
            running.pop()

    for _ in range(10):
        dispatcher.submit("same", task)
    assert dispatcher.wait_idle(timeout=5)
    assert overlaps == []


def test_different_keys_run_in_parallel(dispatcher):
    gate = threading.Event()
    started = threading.Barrier(2, timeout=5)

    def wait_for_peer():
        started.wait()
        gate.set()

    first = dispatcher.submit("a", wait_for_peer)
    second = dispatcher.submit("b", wait_for_peer)
    first.result(timeout=5)
    second.result(timeout=5)
    assert gate.is_set()


def test_failure_does_not_block_the_queue(dispatcher):
    def boom():
        raise ValueError("bad payload")

    failed = dispatcher.submit("k", boom)
    ok = dispatcher.submit("k", lambda: "next")

    with pytest.raises(ValueError):
        failed.result(timeout=5)
    assert ok.result(timeout=5) == "next"


def test_wait_idle_and_pending(dispatcher):
    release = threading.Event()
    dispatcher.submit("k", release.wait, 5)
    dispatcher.submit("k", lambda: None)

    assert dispatcher.pending() == 2
    assert dispatcher.wait_idle(timeout=0.05) is False
    release.set()
    assert dispatcher.wait_idle(timeout=5) is True
    assert dispatcher.pending() == 0


def test_submit_after_shutdown_fails():
    dispatcher = ConversationDispatcher(max_workers=1)
    dispatcher.shutdown()
    with pytest.raises(RuntimeError):
        dispatcher.submit("k", lambda: None)
