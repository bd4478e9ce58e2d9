"""Unit tests for the work queue and control loop."""

import threading
import time
from unittest.mock import Mock

import pytest

from opensearch_operator.controller import ClusterController, PassResult
from opensearch_operator.exceptions import InvalidSpec, TransientInfraError
from opensearch_operator.loop import ControlLoop, WorkQueue, split_key


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    return WorkQueue(backoff_base=1.0, backoff_max=8.0, clock=clock)


def test_split_key():
    assert split_key("default/my-cluster") == ("default", "my-cluster")


def test_duplicate_adds_coalesce(queue):
    queue.add("ns/a")
    queue.add("ns/a")
    queue.add("ns/b")
    assert len(queue) == 2
    assert queue.get(timeout=0) == "ns/a"
    assert queue.get(timeout=0) == "ns/b"
    assert queue.get(timeout=0) is None


def test_key_in_flight_is_not_handed_out_twice(queue):
    queue.add("ns/a")
    assert queue.get(timeout=0) == "ns/a"

    queue.add("ns/a")
    queue.add("ns/a")
    assert queue.get(timeout=0) is None

    queue.done("ns/a")
    assert queue.get(timeout=0) == "ns/a"
    queue.done("ns/a")
    assert queue.get(timeout=0) is None


def test_add_after_waits_for_deadline(queue, clock):
    queue.add_after("ns/a", 10)
    assert queue.get(timeout=0) is None
    clock.now = 10
    assert queue.get(timeout=0) == "ns/a"


def test_add_after_keeps_earliest_deadline(queue, clock):
    queue.add_after("ns/a", 300)
    queue.add_after("ns/a", 5)
    queue.add_after("ns/a", 300)

    clock.now = 5
    assert queue.get(timeout=0) == "ns/a"
    queue.done("ns/a")

    clock.now = 1000
    assert queue.get(timeout=0) is None


def test_rate_limited_backoff_doubles_and_caps(queue):
    delays = [queue.add_rate_limited("ns/a") for _ in range(6)]
    assert delays == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]
    queue.forget("ns/a")
    assert queue.add_rate_limited("ns/a") == 1.0


def test_shutdown_unblocks_get(queue):
    queue.shutdown()
    assert queue.get() is None
    queue.add("ns/a")
    assert len(queue) == 0


def loop_with(result=None, error=None):
    controller = Mock(spec=ClusterController)
    if error is not None:
        controller.reconcile_key.side_effect = error
    else:
        controller.reconcile_key.return_value = result or PassResult()
    queue = Mock(spec=WorkQueue)
    queue.add_rate_limited.return_value = 1.0
    return ControlLoop(controller, queue, workers=1, resync_seconds=300), controller, queue


def test_process_schedules_resync_after_success():
    loop, controller, queue = loop_with(PassResult())
    loop.process("ns/a")
    controller.reconcile_key.assert_called_once_with("ns", "a")
    queue.forget.assert_called_once_with("ns/a")
    queue.add_after.assert_called_once_with("ns/a", 300)


def test_process_honours_requeue_after():
    loop, _, queue = loop_with(PassResult(requeue=True, requeue_after=30))
    loop.process("ns/a")
    queue.add_after.assert_called_once_with("ns/a", 30)


def test_process_backs_off_on_requeue_without_delay():
    loop, _, queue = loop_with(PassResult(requeue=True))
    loop.process("ns/a")
    queue.add_rate_limited.assert_called_once_with("ns/a")
    queue.forget.assert_not_called()


@pytest.mark.parametrize("error", [TransientInfraError("unavailable"), InvalidSpec("bad")])
def test_process_backs_off_on_errors(error):
    loop, _, queue = loop_with(error=error)
    assert loop.process("ns/a") is None
    queue.add_rate_limited.assert_called_once_with("ns/a")
    queue.add_after.assert_not_called()


def test_one_pass_at_a_time_per_cluster():
    active = 0
    max_active = 0
    calls = 0
    lock = threading.Lock()
    started = threading.Event()
    finished = threading.Event()

    def reconcile_key(namespace, name):
        nonlocal active, max_active, calls
        with lock:
            active += 1
            calls += 1
            max_active = max(max_active, active)
        started.set()
        time.sleep(0.05)
        with lock:
            active -= 1
        if calls >= 2:
            finished.set()
        return PassResult()

    controller = Mock(spec=ClusterController)
    controller.reconcile_key.side_effect = reconcile_key
    loop = ControlLoop(controller, WorkQueue(), workers=4, resync_seconds=300)
    loop.start()
    try:
        loop.enqueue("ns/a")
        assert started.wait(5)
        for _ in range(20):
            loop.enqueue("ns/a")
        assert finished.wait(5)
    finally:
        loop.stop()

    assert max_active == 1
    # Events during the first pass collapse into exactly one follow-up pass
    assert calls == 2


def test_independent_clusters_run_in_parallel():
    barrier = threading.Barrier(2, timeout=5)

    def reconcile_key(namespace, name):
        barrier.wait()
        return PassResult()

    controller = Mock(spec=ClusterController)
    controller.reconcile_key.side_effect = reconcile_key
    loop = ControlLoop(controller, WorkQueue(), workers=2, resync_seconds=300)
    loop.start()
    try:
        loop.enqueue("ns/a")
        loop.enqueue("ns/b")
        deadline = time.monotonic() + 5
        while controller.reconcile_key.call_count < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        loop.stop()

    assert not barrier.broken
    assert controller.reconcile_key.call_count == 2
