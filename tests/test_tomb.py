import threading

import pytest

from nodestats.tomb import Tomb


def test_tomb_workflow():
    tomb = Tomb()
    workflow = []

    def worker():
        try:
            tomb.stopping().wait()
            workflow.append("stopping")
        finally:
            tomb.done()

    thread = threading.Thread(target=worker)
    thread.start()
    workflow.append("stop")
    tomb.stop()
    workflow.append("stopped")
    thread.join(timeout=5)
    assert tomb.stopping().is_set() is True
    assert workflow == ["stop", "stopping", "stopped"]


def test_stopping_not_set_before_stop():
    tomb = Tomb()
    assert tomb.stopping().is_set() is False


def test_done_twice_raises():
    tomb = Tomb()
    tomb.done()
    with pytest.raises(RuntimeError):
        tomb.done()


def test_stop_twice_raises():
    tomb = Tomb()
    tomb.done()
    tomb.stop()
    assert tomb.stopping().is_set() is True
    with pytest.raises(RuntimeError):
        tomb.stop()