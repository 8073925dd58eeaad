"""Value types shared by the loader, cache and executor."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from edgeml.core.errors import InvalidArguments

if TYPE_CHECKING:
    from edgeml.inference.model import ModelHandle


@dataclass(frozen=True)
class AccelerationConfig:
    use_accelerator: bool = False
    thread_count: int = 2

    def __post_init__(self) -> None:
        # bool is an int subclass; True is not a thread count
        if isinstance(self.thread_count, bool) or not isinstance(self.thread_count, int):
            raise InvalidArguments(
                f"thread_count must be an integer, got {self.thread_count!r}"
            )
        if self.thread_count <= 0:
            raise InvalidArguments(
                f"thread_count must be positive, got {self.thread_count}"
            )


@dataclass(frozen=True)
class ModelSignature:
    """Tensor layout of a loaded model's first input and first output."""

    input_shape: tuple[int, ...]
    input_dtype: str
    output_shape: tuple[int, ...]
    output_dtype: str

    @property
    def input_size(self) -> int:
        size = 1
        for dim in self.input_shape:
            size *= dim
        return size


@dataclass(frozen=True)
class ModelMetadata:
    name: str
    loaded_at: datetime
    config: AccelerationConfig
    backend: str


@dataclass(eq=False)
class CacheEntry:
    """A resident model: its handle, bookkeeping and execution guard.

    ``active`` and ``evicted`` are only touched under the owning cache's
    lock; ``exec_lock`` serialises forward passes against this handle.
    ``run_gate`` queues async callers on the event loop so that waiting
    for a busy model never occupies an inference worker.
    """

    handle: ModelHandle
    metadata: ModelMetadata
    sequence: int
    exec_lock: threading.Lock = field(default_factory=threading.Lock)
    run_gate: asyncio.Lock = field(default_factory=asyncio.Lock)
    active: int = 0
    evicted: bool = False

    @property
    def age_key(self) -> tuple[datetime, int]:
        return (self.metadata.loaded_at, self.sequence)


@dataclass(frozen=True)
class InferenceRequest:
    model_name: str
    input_vector: list[float]
    expected_output_shape: list[int] = field(default_factory=list)


@dataclass
class InferenceResult:
    output_vector: list[float]
    elapsed_ms: float
    output_shape: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "output": self.output_vector,
            "elapsed_ms": self.elapsed_ms,
            "output_shape": self.output_shape,
        }


@dataclass(frozen=True)
class LoadResult:
    success: bool
    already_resident: bool

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "already_resident": self.already_resident}
