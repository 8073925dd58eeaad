"""Model bundles: reference architectures, export, and loading onto a backend."""

from __future__ import annotations

import io
import json
import time
from typing import Any, Callable

import torch
import torch.nn as nn
import torch.nn.functional as F

from edgeml.core.errors import BackendUnavailable, ModelLoadFailed
from edgeml.core.logging import get_logger
from edgeml.core.metrics import BACKEND_FALLBACKS, MODEL_LOAD_COUNT, MODEL_LOAD_LATENCY
from edgeml.inference.backends import SOFTWARE, AccelerationBackend, resolve_backends
from edgeml.inference.descriptor import AccelerationConfig, ModelSignature

logger = get_logger(__name__)

SIGNATURE_FILE = "signature.json"

DTYPES: dict[str, torch.dtype] = {
    "float16": torch.float16,
    "bfloat16": torch.bfloat16,
    "float32": torch.float32,
    "float64": torch.float64,
    "uint8": torch.uint8,
    "int8": torch.int8,
    "int16": torch.int16,
    "int32": torch.int32,
    "int64": torch.int64,
    "bool": torch.bool,
}


def dtype_name(dtype: torch.dtype) -> str:
    return str(dtype).replace("torch.", "")


# Architecture registry: name -> class
ARCHITECTURES: dict[str, type[nn.Module]] = {}


def _register_arch(name: str):
    """Decorator to register a model class under *name*."""
    def wrapper(cls: type[nn.Module]) -> type[nn.Module]:
        ARCHITECTURES[name] = cls
        return cls
    return wrapper


@_register_arch("linear")
class LinearScorer(nn.Module):
    """Single affine layer; useful as a smoke-test bundle."""

    def __init__(self, input_size: int, output_size: int) -> None:
        super().__init__()
        self.fc = nn.Linear(input_size, output_size)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.fc(x)


@_register_arch("stress_mlp")
class StressClassifier(nn.Module):
    """Two hidden layers over a flat physiological feature vector.

    Outputs class probabilities (e.g. low / medium / high stress).
    """

    def __init__(self, input_size: int, output_size: int) -> None:
        super().__init__()
        self.fc1 = nn.Linear(input_size, 32)
        self.fc2 = nn.Linear(32, 16)
        self.fc3 = nn.Linear(16, output_size)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = F.relu(self.fc1(x))
        x = F.relu(self.fc2(x))
        return F.softmax(self.fc3(x), dim=-1)


def build_architecture(architecture: str, input_size: int, output_size: int) -> nn.Module:
    """Instantiate a registered architecture with fresh weights."""
    if architecture not in ARCHITECTURES:
        raise ValueError(
            f"Unknown architecture '{architecture}'. "
            f"Available: {list(ARCHITECTURES.keys())}"
        )
    return ARCHITECTURES[architecture](input_size, output_size)


def export_bundle(
    module: nn.Module,
    input_shape: tuple[int, ...] | list[int],
    dest: Any,
    input_dtype: str = "float32",
) -> None:
    """Script *module* and save it with its input signature.

    Args:
        dest: File path or writable binary file object.
    """
    scripted = torch.jit.script(module.eval())
    signature = {"input_shape": list(input_shape), "input_dtype": input_dtype}
    torch.jit.save(scripted, dest, _extra_files={SIGNATURE_FILE: json.dumps(signature)})


def bundle_bytes(
    module: nn.Module,
    input_shape: tuple[int, ...] | list[int],
    input_dtype: str = "float32",
) -> bytes:
    buf = io.BytesIO()
    export_bundle(module, input_shape, buf, input_dtype=input_dtype)
    return buf.getvalue()


class ModelHandle:
    """A scripted module bound to one device with pre-allocated input.

    Not safe for concurrent forward passes: ``input_buffer`` is rewritten
    in place on every call. The resident cache serialises access.
    """

    def __init__(
        self,
        name: str,
        module: torch.jit.ScriptModule,
        device: torch.device,
        backend: str,
        input_buffer: torch.Tensor,
        signature: ModelSignature,
    ) -> None:
        self.name = name
        self.module: torch.jit.ScriptModule | None = module
        self.device = device
        self.backend = backend
        self.input_buffer: torch.Tensor | None = input_buffer
        self.signature = signature
        # intra-op threads for cpu handles, applied on every forward pass
        self.thread_count: int | None = None
        self.released = False

    def invoke(self) -> torch.Tensor:
        """Run the forward pass on the current input buffer."""
        if self.module is None or self.input_buffer is None:
            raise RuntimeError(f"model {self.name} has been released")
        if self.thread_count is not None and torch.get_num_threads() != self.thread_count:
            torch.set_num_threads(self.thread_count)
        with torch.inference_mode():
            return _first_tensor(self.module(self.input_buffer))

    def synchronize(self) -> None:
        if self.device.type == "cuda":
            torch.cuda.synchronize(self.device)
        elif self.device.type == "mps":
            torch.mps.synchronize()

    def release(self) -> None:
        """Drop the module and buffers and free cached device memory."""
        if self.released:
            return
        self.released = True
        self.module = None
        self.input_buffer = None
        if self.device.type == "cuda":
            torch.cuda.empty_cache()
        elif self.device.type == "mps":
            torch.mps.empty_cache()
        logger.debug("model_released", model_name=self.name, backend=self.backend)


def _first_tensor(output: Any) -> torch.Tensor:
    if isinstance(output, torch.Tensor):
        return output
    if isinstance(output, (list, tuple)) and output and isinstance(output[0], torch.Tensor):
        return output[0]
    if isinstance(output, dict) and output:
        first = next(iter(output.values()))
        if isinstance(first, torch.Tensor):
            return first
    raise TypeError(f"model returned {type(output).__name__}, expected a tensor")


def _deserialize(
    name: str, data: bytes, device: torch.device
) -> tuple[torch.jit.ScriptModule, str]:
    extra_files = {SIGNATURE_FILE: ""}
    try:
        module = torch.jit.load(
            io.BytesIO(data), map_location=device, _extra_files=extra_files
        )
    except Exception as exc:
        raise ModelLoadFailed(f"Failed to load model {name}: {exc}") from exc
    raw = extra_files[SIGNATURE_FILE]
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return module, raw


def _parse_signature(name: str, raw: str) -> tuple[tuple[int, ...], str]:
    if not raw:
        raise ModelLoadFailed(f"Model {name} has no {SIGNATURE_FILE}")
    try:
        declared = json.loads(raw)
        shape = tuple(declared["input_shape"])
        input_dtype = declared.get("input_dtype", "float32")
    except (ValueError, KeyError, TypeError) as exc:
        raise ModelLoadFailed(f"Model {name} has an invalid signature: {exc}") from exc
    if not shape or not all(isinstance(d, int) and not isinstance(d, bool) and d > 0 for d in shape):
        raise ModelLoadFailed(f"Model {name} declares invalid input shape {list(shape)}")
    if input_dtype not in DTYPES:
        raise ModelLoadFailed(f"Model {name} declares unsupported input dtype {input_dtype}")
    return shape, input_dtype


def _bind(
    name: str,
    module: torch.jit.ScriptModule,
    device: torch.device,
    backend: AccelerationBackend,
    input_shape: tuple[int, ...],
    input_dtype: str,
) -> ModelHandle:
    """Allocate buffers on *device* and run a zeroed warm-up pass."""
    module.eval()
    input_buffer = torch.zeros(input_shape, dtype=DTYPES[input_dtype], device=device)
    with torch.inference_mode():
        output = _first_tensor(module(input_buffer))
    signature = ModelSignature(
        input_shape=input_shape,
        input_dtype=input_dtype,
        output_shape=tuple(output.shape),
        output_dtype=dtype_name(output.dtype),
    )
    return ModelHandle(name, module, device, backend.name, input_buffer, signature)


def load_model(
    name: str,
    config: AccelerationConfig,
    resolve_bytes: Callable[[str], bytes],
) -> ModelHandle:
    """Resolve *name* to a bundle and bind it to the best available backend.

    Backends from :func:`resolve_backends` are tried in order. One that
    cannot be attached, or that fails to run the warm-up pass, is logged
    and skipped. Only a failure on the software backend fails the load.

    Raises:
        ModelNotFound: *resolve_bytes* has no bundle for *name*.
        ModelLoadFailed: the bundle is malformed or no backend can run it.
    """
    start = time.perf_counter()
    data = resolve_bytes(name)

    try:
        cpu_module, raw_signature = _deserialize(name, data, torch.device("cpu"))
        input_shape, input_dtype = _parse_signature(name, raw_signature)
    except ModelLoadFailed:
        MODEL_LOAD_COUNT.labels(outcome="failed").inc()
        raise

    attempted: set[str] = set()
    for backend in resolve_backends(config):
        if backend.name in attempted:
            continue
        attempted.add(backend.name)

        try:
            device = backend.attach()
        except BackendUnavailable as exc:
            BACKEND_FALLBACKS.labels(backend=backend.name).inc()
            logger.info(
                "backend_unavailable",
                model_name=name,
                backend=backend.name,
                reason=str(exc),
            )
            continue

        try:
            if device.type == "cpu":
                torch.set_num_threads(config.thread_count)
                module = cpu_module
            else:
                module, _ = _deserialize(name, data, device)
            handle = _bind(name, module, device, backend, input_shape, input_dtype)
            if device.type == "cpu":
                handle.thread_count = config.thread_count
        except Exception as exc:
            if backend.kind == SOFTWARE:
                MODEL_LOAD_COUNT.labels(outcome="failed").inc()
                logger.error("model_load_failed", model_name=name, error=str(exc))
                raise ModelLoadFailed(f"Failed to load model {name}: {exc}") from exc
            BACKEND_FALLBACKS.labels(backend=backend.name).inc()
            logger.warning(
                "backend_fallback",
                model_name=name,
                backend=backend.name,
                error=str(exc),
            )
            continue

        elapsed = time.perf_counter() - start
        MODEL_LOAD_LATENCY.labels(backend=backend.name).observe(elapsed)
        MODEL_LOAD_COUNT.labels(outcome="loaded").inc()
        logger.info(
            "model_loaded",
            model_name=name,
            backend=backend.name,
            thread_count=config.thread_count,
            input_shape=list(handle.signature.input_shape),
            output_shape=list(handle.signature.output_shape),
            load_ms=round(elapsed * 1000.0, 3),
        )
        return handle

    MODEL_LOAD_COUNT.labels(outcome="failed").inc()
    raise ModelLoadFailed(f"Failed to load model {name}: no backend could run it")
