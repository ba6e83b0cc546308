"""Tests for the store write lock."""

import threading
import time

import pytest

from agent_notes.locking import LockTimeout, exclusive_lock, lock_path_for


def test_lock_path_is_sibling(tmp_path):
    target = tmp_path / ".vscode" / "agent-notes.json"
    assert lock_path_for(target) == tmp_path / ".vscode" / "agent-notes.json.lock"


def test_lock_creates_parent_directories(tmp_path):
    target = tmp_path / "deep" / "nested" / "agent-notes.json"

    with exclusive_lock(target):
        assert lock_path_for(target).exists()

    assert not target.exists()


def test_lock_is_reusable_after_release(tmp_path):
    target = tmp_path / "agent-notes.json"

    with exclusive_lock(target):
        pass
    with exclusive_lock(target, timeout=0.5):
        pass


def test_lock_timeout_on_held_lock(tmp_path):
    """A second holder times out while the first keeps the lock."""
    target = tmp_path / "agent-notes.json"

    with exclusive_lock(target):
        start = time.monotonic()
        with pytest.raises(LockTimeout, match="Failed to acquire store lock"):
            with exclusive_lock(target, timeout=0.3):
                pass
        elapsed = time.monotonic() - start

    assert 0.25 <= elapsed <= 2.0


def test_waiter_acquires_after_release(tmp_path):
    target = tmp_path / "agent-notes.json"
    order = []
    holding = threading.Event()

    def holder():
        with exclusive_lock(target):
            order.append("holder")
            holding.set()
            time.sleep(0.2)
            order.append("releasing")

    thread = threading.Thread(target=holder)
    thread.start()
    holding.wait(timeout=5)

    with exclusive_lock(target, timeout=5):
        order.append("waiter")
    thread.join()

    assert order == ["holder", "releasing", "waiter"]
