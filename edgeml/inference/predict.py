"""Single-vector inference against a resident model."""

from __future__ import annotations

import time
from typing import Sequence

import numpy as np
import torch

from edgeml.core.errors import InferenceFailed, InvalidInputShape
from edgeml.core.logging import get_logger
from edgeml.inference.descriptor import InferenceResult
from edgeml.inference.model import ModelHandle

logger = get_logger(__name__)


def _to_input_tensor(handle: ModelHandle, input_vector: Sequence[float]) -> torch.Tensor:
    """Convert float64 values to the model's input dtype and layout."""
    signature = handle.signature
    values = np.asarray(input_vector, dtype=np.float64).reshape(-1)
    if values.size != signature.input_size:
        raise InvalidInputShape(
            f"Model {handle.name} expects {signature.input_size} input values "
            f"(shape {list(signature.input_shape)}), got {values.size}"
        )
    tensor = torch.from_numpy(values).to(dtype=handle.input_buffer.dtype)
    return tensor.reshape(signature.input_shape)


def run_inference(
    handle: ModelHandle,
    input_vector: Sequence[float],
    expected_output_shape: Sequence[int] | None = None,
) -> InferenceResult:
    """Run one forward pass.

    The caller must hold exclusive use of *handle* for the duration
    (see ``ModelCache.lease``).

    Args:
        handle: Resident model.
        input_vector: Flat feature vector; its length must equal the
            element count of the model's input tensor.
        expected_output_shape: Only compared for diagnostics.

    Returns:
        InferenceResult with the flattened float64 output and the time
        spent in the forward pass alone.
    """
    tensor = _to_input_tensor(handle, input_vector)

    try:
        handle.input_buffer.copy_(tensor)
        start = time.perf_counter()
        output = handle.invoke()
        handle.synchronize()
        elapsed_ms = (time.perf_counter() - start) * 1000.0
    except Exception as exc:
        logger.error("inference_failed", model_name=handle.name, error=str(exc))
        raise InferenceFailed(f"Inference failed for {handle.name}: {exc}") from exc

    output_shape = list(output.shape)
    if expected_output_shape and list(expected_output_shape) != output_shape:
        logger.warning(
            "output_shape_mismatch",
            model_name=handle.name,
            expected=list(expected_output_shape),
            actual=output_shape,
        )

    output_vector = (
        output.detach().to("cpu", dtype=torch.float64).reshape(-1).numpy().tolist()
    )
    logger.debug(
        "inference_completed",
        model_name=handle.name,
        elapsed_ms=round(elapsed_ms, 3),
    )
    return InferenceResult(
        output_vector=output_vector,
        elapsed_ms=round(elapsed_ms, 3),
        output_shape=output_shape,
    )
