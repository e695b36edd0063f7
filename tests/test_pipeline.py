import threading
import time

import pytest

from errors import StoreError, StoreUnavailableError
from pipeline import escalate_if_unreachable, map_bounded


def test_results_keep_input_order():
    def slow_square(n):
        time.sleep(0.01 * (5 - n))
        return n * n

    assert map_bounded(slow_square, range(5), max_workers=3) == [0, 1, 4, 9, 16]


def test_concurrency_never_exceeds_the_bound():
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def work(_):
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.02)
        with lock:
            state["active"] -= 1

    map_bounded(work, range(12), max_workers=3)

    assert 1 <= state["peak"] <= 3


def test_single_worker_runs_inline():
    thread_names = map_bounded(lambda _: threading.current_thread().name, range(3), max_workers=1)
    assert set(thread_names) == {threading.current_thread().name}


def test_escaping_exception_propagates():
    def work(n):
        if n == 2:
            raise StoreUnavailableError("gone")
        return n

    with pytest.raises(StoreUnavailableError):
        map_bounded(work, range(6), max_workers=2)


def test_store_error_with_healthy_store_is_not_escalated(temp_db):
    escalate_if_unreachable(StoreError("UNIQUE constraint failed"))


def test_store_error_with_missing_store_escalates(tmp_path, monkeypatch):
    from database import db

    monkeypatch.setattr(db, "DB_PATH", tmp_path / "missing" / "class.db")
    with pytest.raises(StoreUnavailableError):
        escalate_if_unreachable(StoreError("disk I/O error"))
