"""Shared test fixtures."""

from __future__ import annotations

import pytest
import torch
import torch.nn as nn

from edgeml.inference.model import build_architecture, export_bundle
from edgeml.inference.service import InferenceService
from edgeml.inference.store import ModelStore

LINEAR_IN = 4
LINEAR_OUT = 2
STRESS_IN = 8
STRESS_OUT = 3


class Tripwire(nn.Module):
    """Doubles its input; raises once the input sum passes a threshold."""

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        if bool(x.sum() > 1000.0):
            raise RuntimeError("numeric trap")
        return x * 2.0


def linear_module(seed: int = 0) -> nn.Module:
    torch.manual_seed(seed)
    return build_architecture("linear", LINEAR_IN, LINEAR_OUT)


@pytest.fixture()
def store_dir(tmp_path):
    """Model store populated with small bundles."""
    d = tmp_path / "models"
    d.mkdir()
    for i, name in enumerate(["a.pt", "b.pt", "c.pt", "d.pt"]):
        export_bundle(linear_module(seed=i), (1, LINEAR_IN), str(d / name))

    torch.manual_seed(42)
    stress = build_architecture("stress_mlp", STRESS_IN, STRESS_OUT)
    export_bundle(stress, (1, STRESS_IN), str(d / "stress.pt"))

    export_bundle(Tripwire(), (2, 2), str(d / "tripwire.pt"))

    # valid TorchScript, but no signature
    torch.jit.save(torch.jit.script(linear_module()), str(d / "unsigned.pt"))
    (d / "broken.pt").write_bytes(b"definitely not a torchscript archive")
    return str(d)


@pytest.fixture()
def model_store(store_dir) -> ModelStore:
    return ModelStore(store_dir)


@pytest.fixture()
def service(model_store):
    svc = InferenceService(store=model_store, max_resident_models=3)
    yield svc
    svc.shutdown()


@pytest.fixture(autouse=True)
def _set_env_for_tests(tmp_path, monkeypatch):
    """Point the default store at a temporary directory."""
    monkeypatch.setenv("MODEL_STORE_DIR", str(tmp_path / "models"))
    monkeypatch.setenv("MAX_RESIDENT_MODELS", "3")
    monkeypatch.delenv("PRELOAD_MODELS", raising=False)
    yield
