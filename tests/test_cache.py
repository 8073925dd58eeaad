"""Tests for the resident model cache."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from edgeml.core.errors import ModelNotLoaded
from edgeml.inference.cache import ModelCache
from edgeml.inference.descriptor import AccelerationConfig, ModelMetadata

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeHandle:
    def __init__(self, name: str) -> None:
        self.name = name
        self.released = False
        self.release_count = 0

    def release(self) -> None:
        self.release_count += 1
        self.released = True


def _meta(name: str, offset_s: int = 0) -> ModelMetadata:
    return ModelMetadata(
        name=name,
        loaded_at=T0 + timedelta(seconds=offset_s),
        config=AccelerationConfig(),
        backend="cpu",
    )


def _fill(cache: ModelCache, names, same_time: bool = False) -> dict[str, FakeHandle]:
    handles = {}
    for i, name in enumerate(names):
        handles[name] = FakeHandle(name)
        cache.put(name, handles[name], _meta(name, 0 if same_time else i))
    return handles


def test_put_and_get():
    cache = ModelCache(3)
    handles = _fill(cache, ["A"])
    assert cache.get("A") is handles["A"]
    assert cache.get("a") is None
    assert cache.contains("A")
    assert len(cache) == 1


def test_capacity_scenario_evicts_oldest():
    cache = ModelCache(3)
    handles = _fill(cache, ["A", "B", "C", "D"])
    assert sorted(cache.names()) == ["B", "C", "D"]
    assert handles["A"].released
    assert not any(handles[n].released for n in "BCD")


def test_ties_broken_by_insertion_order():
    cache = ModelCache(2)
    handles = _fill(cache, ["X", "Y", "Z"], same_time=True)
    assert cache.names() == ["Y", "Z"]
    assert handles["X"].released


def test_evicts_by_loaded_at_not_insertion():
    cache = ModelCache(2)
    cache.put("new", FakeHandle("new"), _meta("new", 100))
    old = FakeHandle("old")
    cache.put("old", old, _meta("old", 0))
    cache.put("mid", FakeHandle("mid"), _meta("mid", 50))
    assert sorted(cache.names()) == ["mid", "new"]
    assert old.released


def test_bound_holds_after_every_put():
    cache = ModelCache(3)
    for i in range(10):
        cache.put(f"m{i}", FakeHandle(f"m{i}"), _meta(f"m{i}", i))
        assert len(cache) <= 3


def test_get_does_not_refresh_recency():
    cache = ModelCache(2)
    _fill(cache, ["A", "B"])
    cache.get("A")
    cache.put("C", FakeHandle("C"), _meta("C", 10))
    assert sorted(cache.names()) == ["B", "C"]


def test_duplicate_put_is_rejected():
    cache = ModelCache(3)
    handles = _fill(cache, ["A", "B"])
    dup = FakeHandle("A")
    assert cache.put("A", dup, _meta("A", 99)) is False
    assert cache.get("A") is handles["A"]
    assert cache.entry("A").metadata.loaded_at == T0
    assert len(cache) == 2
    assert not dup.released


def test_remove_and_clear():
    cache = ModelCache(3)
    handles = _fill(cache, ["A", "B", "C"])
    assert cache.remove("A") is True
    assert cache.remove("A") is False
    assert handles["A"].released
    assert cache.clear() == 2
    assert len(cache) == 0
    assert all(h.released for h in handles.values())
    assert cache.clear() == 0


def test_lease_missing_model():
    cache = ModelCache(3)
    with pytest.raises(ModelNotLoaded):
        with cache.lease("nope"):
            pass


def test_release_deferred_while_leased():
    cache = ModelCache(3)
    handles = _fill(cache, ["A"])
    with cache.lease("A") as entry:
        assert cache.remove("A") is True
        assert not cache.contains("A")
        assert not handles["A"].released
        assert entry.handle is handles["A"]
    assert handles["A"].released
    assert handles["A"].release_count == 1


def test_eviction_deferred_while_leased():
    cache = ModelCache(1)
    handles = _fill(cache, ["A"])
    with cache.lease("A"):
        cache.put("B", FakeHandle("B"), _meta("B", 5))
        assert cache.names() == ["B"]
        assert not handles["A"].released
    assert handles["A"].released


def test_queued_call_sees_unload():
    cache = ModelCache(3)
    _fill(cache, ["A"])
    started = threading.Event()
    outcome: list[str] = []

    def waiter() -> None:
        started.set()
        try:
            with cache.lease("A"):
                outcome.append("ran")
        except ModelNotLoaded:
            outcome.append("not_loaded")

    with cache.lease("A"):
        t = threading.Thread(target=waiter)
        t.start()
        started.wait()
        # let the waiter register its lease before unloading
        for _ in range(100):
            if cache.entry("A").active == 2:
                break
            time.sleep(0.01)
        cache.remove("A")
    t.join(timeout=5)
    assert outcome == ["not_loaded"]


def test_same_name_runs_are_serialised():
    cache = ModelCache(3)
    _fill(cache, ["A"])
    active = 0
    peak = 0
    guard = threading.Lock()

    def work() -> None:
        nonlocal active, peak
        with cache.lease("A"):
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.005)
            with guard:
                active -= 1

    threads = [threading.Thread(target=work) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert peak == 1


def test_different_names_run_in_parallel():
    cache = ModelCache(3)
    _fill(cache, ["A", "B"])
    barrier = threading.Barrier(2, timeout=5)
    passed: list[str] = []

    def work(name: str) -> None:
        with cache.lease(name):
            # both leases must be held at once to pass the barrier
            barrier.wait()
            passed.append(name)

    threads = [threading.Thread(target=work, args=(n,)) for n in "AB"]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(passed) == ["A", "B"]
