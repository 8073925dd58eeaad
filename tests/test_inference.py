"""Tests for bundle loading and the inference executor."""

from __future__ import annotations

import pytest
import torch

from edgeml.core.errors import (
    InferenceFailed,
    InvalidArguments,
    InvalidInputShape,
    ModelLoadFailed,
    ModelNotFound,
)
from edgeml.inference.descriptor import AccelerationConfig
from edgeml.inference.model import bundle_bytes, load_model
from edgeml.inference.predict import run_inference

from conftest import LINEAR_IN, LINEAR_OUT, STRESS_IN, STRESS_OUT, linear_module

CPU = AccelerationConfig(use_accelerator=False, thread_count=1)


def test_model_loads(model_store):
    handle = load_model("stress.pt", CPU, model_store.resolve_bytes)
    sig = handle.signature
    assert sig.input_shape == (1, STRESS_IN)
    assert sig.input_dtype == "float32"
    assert sig.output_shape == (1, STRESS_OUT)
    assert sig.output_dtype == "float32"
    assert handle.input_buffer.shape == (1, STRESS_IN)


def test_load_applies_thread_count(model_store):
    load_model("a.pt", AccelerationConfig(False, 3), model_store.resolve_bytes)
    assert torch.get_num_threads() == 3


def test_cpu_models_keep_their_own_thread_count(model_store):
    one = load_model("a.pt", AccelerationConfig(False, 1), model_store.resolve_bytes)
    three = load_model("b.pt", AccelerationConfig(False, 3), model_store.resolve_bytes)
    run_inference(one, [0.0] * LINEAR_IN)
    assert torch.get_num_threads() == 1
    run_inference(three, [0.0] * LINEAR_IN)
    assert torch.get_num_threads() == 3


def test_missing_model(model_store):
    with pytest.raises(ModelNotFound):
        load_model("missing.model", CPU, model_store.resolve_bytes)


def test_names_outside_store_are_not_found(model_store):
    with pytest.raises(ModelNotFound):
        load_model("../models/a.pt", CPU, model_store.resolve_bytes)


@pytest.mark.parametrize("name", ["broken.pt", "unsigned.pt"])
def test_malformed_bundle(model_store, name):
    with pytest.raises(ModelLoadFailed):
        load_model(name, CPU, model_store.resolve_bytes)


def test_load_from_any_byte_resolver():
    data = bundle_bytes(linear_module(), (1, LINEAR_IN))
    handle = load_model("inline", CPU, lambda name: data)
    assert handle.signature.output_shape == (1, LINEAR_OUT)


def test_declared_shape_must_match_graph():
    # graph wants 4 features, signature claims 5: warm-up pass fails
    data = bundle_bytes(linear_module(), (1, LINEAR_IN + 1))
    with pytest.raises(ModelLoadFailed):
        load_model("bad_shape", CPU, lambda name: data)


def test_config_rejects_bad_thread_count():
    with pytest.raises(InvalidArguments):
        AccelerationConfig(thread_count=0)
    with pytest.raises(InvalidArguments):
        AccelerationConfig(thread_count=True)


def test_predict_single(model_store):
    module = linear_module(seed=0)
    handle = load_model("a.pt", CPU, model_store.resolve_bytes)
    values = [0.5, -1.0, 2.0, 0.25]

    result = run_inference(handle, values, [1, LINEAR_OUT])

    expected = module(torch.tensor([values], dtype=torch.float32))
    assert result.output_shape == [1, LINEAR_OUT]
    assert result.output_vector == pytest.approx(expected.reshape(-1).tolist(), abs=1e-6)
    assert all(isinstance(v, float) for v in result.output_vector)
    assert result.elapsed_ms >= 0


def test_stress_outputs_are_probabilities(model_store):
    handle = load_model("stress.pt", CPU, model_store.resolve_bytes)
    result = run_inference(handle, [0.1] * STRESS_IN)
    assert sum(result.output_vector) == pytest.approx(1.0, abs=1e-5)


@pytest.mark.parametrize("size", [0, LINEAR_IN - 1, LINEAR_IN + 1])
def test_input_size_mismatch(model_store, size):
    handle = load_model("a.pt", CPU, model_store.resolve_bytes)
    with pytest.raises(InvalidInputShape):
        run_inference(handle, [1.0] * size)


def test_expected_output_shape_is_diagnostic_only(model_store):
    handle = load_model("a.pt", CPU, model_store.resolve_bytes)
    result = run_inference(handle, [1.0] * LINEAR_IN, [7, 7])
    assert result.output_shape == [1, LINEAR_OUT]


def test_runtime_fault_is_inference_failed(model_store):
    handle = load_model("tripwire.pt", CPU, model_store.resolve_bytes)
    assert run_inference(handle, [1.0, 2.0, 3.0, 4.0]).output_vector == [2.0, 4.0, 6.0, 8.0]
    with pytest.raises(InferenceFailed):
        run_inference(handle, [1000.0] * 4)
    # handle still usable afterwards
    assert run_inference(handle, [0.0] * 4).output_vector == [0.0] * 4


def test_buffer_copy_fault_is_inference_failed(model_store):
    handle = load_model("a.pt", CPU, model_store.resolve_bytes)
    # same dtype, but no shape the input can be copied into
    handle.input_buffer = torch.zeros(LINEAR_IN + 1)
    with pytest.raises(InferenceFailed):
        run_inference(handle, [1.0] * LINEAR_IN)


def test_release_is_idempotent(model_store):
    handle = load_model("a.pt", CPU, model_store.resolve_bytes)
    handle.release()
    handle.release()
    assert handle.released
    assert handle.module is None
