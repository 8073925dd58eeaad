"""Bounded cache of resident models with least-recently-loaded eviction."""

from __future__ import annotations

import itertools
import threading
from contextlib import contextmanager
from typing import Iterator

from edgeml.core.errors import ModelNotLoaded
from edgeml.core.logging import get_logger
from edgeml.core.metrics import MODEL_EVICTIONS, RESIDENT_MODELS
from edgeml.inference.descriptor import CacheEntry, ModelMetadata
from edgeml.inference.model import ModelHandle

logger = get_logger(__name__)


class ModelCache:
    """Thread-safe mapping of model name to resident handle.

    Eviction order is by ``loaded_at`` (set once at insertion), ties broken
    by insertion order. Reads never change that order. A handle that is
    leased by an in-flight inference is taken out of the mapping on
    eviction but only released when the last lease ends.
    """

    def __init__(self, max_resident_models: int = 3) -> None:
        if max_resident_models < 1:
            raise ValueError("max_resident_models must be at least 1")
        self.max_resident_models = max_resident_models
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}
        self._sequence = itertools.count()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def contains(self, name: str) -> bool:
        with self._lock:
            return name in self._entries

    def names(self) -> list[str]:
        """Resident names, oldest load first."""
        with self._lock:
            entries = sorted(self._entries.values(), key=lambda e: e.age_key)
        return [e.metadata.name for e in entries]

    def get(self, name: str) -> ModelHandle | None:
        with self._lock:
            entry = self._entries.get(name)
        return entry.handle if entry is not None else None

    def entry(self, name: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(name)

    def put(self, name: str, handle: ModelHandle, metadata: ModelMetadata) -> bool:
        """Insert *handle* under *name*.

        Returns False without touching the cache when *name* is already
        resident; the caller still owns *handle* in that case.
        """
        with self._lock:
            if name in self._entries:
                return False
            self._entries[name] = CacheEntry(
                handle=handle, metadata=metadata, sequence=next(self._sequence)
            )
            evicted = []
            while len(self._entries) > self.max_resident_models:
                oldest = min(self._entries.values(), key=lambda e: e.age_key)
                evicted.append(self._detach(oldest))
            RESIDENT_MODELS.set(len(self._entries))

        for entry in evicted:
            MODEL_EVICTIONS.labels(reason="capacity").inc()
            logger.info(
                "model_evicted",
                model_name=entry.metadata.name,
                loaded_at=entry.metadata.loaded_at.isoformat(),
                deferred=entry.active > 0,
            )
            self._release_if_idle(entry)
        return True

    def remove(self, name: str) -> bool:
        """Unload *name*. Returns whether it was resident."""
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                return False
            self._detach(entry)
            RESIDENT_MODELS.set(len(self._entries))
        MODEL_EVICTIONS.labels(reason="unload").inc()
        self._release_if_idle(entry)
        return True

    def clear(self) -> int:
        """Unload everything and return how many models were resident."""
        with self._lock:
            entries = list(self._entries.values())
            for entry in entries:
                self._detach(entry)
            RESIDENT_MODELS.set(0)
        for entry in entries:
            MODEL_EVICTIONS.labels(reason="clear").inc()
            self._release_if_idle(entry)
        return len(entries)

    @contextmanager
    def lease(self, name: str) -> Iterator[CacheEntry]:
        """Hold *name* for one inference call.

        Calls against the same name run one at a time; the handle stays
        alive until the lease ends even if the model is unloaded meanwhile.
        """
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                raise ModelNotLoaded(f"Model {name} is not loaded")
            entry.active += 1
        try:
            with entry.exec_lock:
                with self._lock:
                    evicted = entry.evicted
                # unloaded while queued behind another call
                if evicted:
                    raise ModelNotLoaded(f"Model {name} is not loaded")
                yield entry
        finally:
            with self._lock:
                entry.active -= 1
                release = entry.evicted and entry.active == 0
            if release:
                entry.handle.release()

    def _detach(self, entry: CacheEntry) -> CacheEntry:
        # caller holds self._lock
        del self._entries[entry.metadata.name]
        entry.evicted = True
        return entry

    def _release_if_idle(self, entry: CacheEntry) -> None:
        with self._lock:
            idle = entry.active == 0
        if idle:
            entry.handle.release()
