"""Acceleration backends and the ordered strategy used to pick one."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import torch

from edgeml.core.errors import BackendUnavailable
from edgeml.inference.descriptor import AccelerationConfig

ACCELERATOR = "accelerator"
INTEGRATED = "integrated"
SOFTWARE = "software"


@dataclass(frozen=True)
class AccelerationBackend:
    """One way of executing a forward pass, tagged by capability kind."""

    name: str
    kind: str
    priority: int
    probe: Callable[[], torch.device]

    def attach(self) -> torch.device:
        """Return the device to bind to, or raise BackendUnavailable."""
        return self.probe()


# Backend registry: name -> backend
BACKENDS: dict[str, AccelerationBackend] = {}


def _register_backend(name: str, kind: str, priority: int):
    """Decorator to register a probe function as backend *name*."""
    def wrapper(probe: Callable[[], torch.device]) -> Callable[[], torch.device]:
        BACKENDS[name] = AccelerationBackend(
            name=name, kind=kind, priority=priority, probe=probe
        )
        return probe
    return wrapper


@_register_backend("cuda", ACCELERATOR, priority=0)
def _probe_cuda() -> torch.device:
    if not torch.cuda.is_available():
        raise BackendUnavailable("CUDA runtime not available")
    return torch.device("cuda")


@_register_backend("mps", INTEGRATED, priority=1)
def _probe_mps() -> torch.device:
    mps = getattr(torch.backends, "mps", None)
    if mps is None or not mps.is_available():
        raise BackendUnavailable("Metal Performance Shaders not available")
    return torch.device("mps")


@_register_backend("cpu", SOFTWARE, priority=2)
def _probe_cpu() -> torch.device:
    return torch.device("cpu")


def software_backend() -> AccelerationBackend:
    return BACKENDS["cpu"]


def resolve_backends(config: AccelerationConfig) -> list[AccelerationBackend]:
    """Return the backends to try for *config*, most preferred first.

    Without the accelerator hint only software execution is offered. The
    list has no duplicates and always ends with the software backend.
    """
    fallback = software_backend()
    if not config.use_accelerator:
        return [fallback]

    ordered = sorted(
        (b for b in BACKENDS.values() if b.kind != SOFTWARE),
        key=lambda b: b.priority,
    )
    ordered.append(fallback)
    return ordered
