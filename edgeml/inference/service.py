"""Asynchronous facade over the resident cache, loader and executor."""

from __future__ import annotations

import asyncio
import numbers
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Sequence

from edgeml.core.config import get_settings
from edgeml.core.errors import InferenceError, InvalidArguments, ModelNotLoaded
from edgeml.core.logging import get_logger
from edgeml.core.metrics import INFERENCE_COUNT, INFERENCE_LATENCY
from edgeml.inference.cache import ModelCache
from edgeml.inference.descriptor import (
    AccelerationConfig,
    InferenceRequest,
    InferenceResult,
    LoadResult,
    ModelMetadata,
)
from edgeml.inference.features import normalize_health_data
from edgeml.inference.model import load_model
from edgeml.inference.predict import run_inference
from edgeml.inference.store import ModelStore

logger = get_logger(__name__)


def _check_name(name: Any) -> str:
    if not isinstance(name, str) or not name:
        raise InvalidArguments("Model name is required")
    return name


def _check_input(values: Any) -> list[float]:
    if not isinstance(values, (list, tuple)):
        raise InvalidArguments("input must be a list of numbers")
    for v in values:
        if isinstance(v, bool) or not isinstance(v, numbers.Real):
            raise InvalidArguments(f"input contains a non-numeric value: {v!r}")
    return [float(v) for v in values]


def _check_shape(shape: Any) -> list[int]:
    if shape is None:
        return []
    if not isinstance(shape, (list, tuple)):
        raise InvalidArguments("output shape must be a list of positive integers")
    for dim in shape:
        if isinstance(dim, bool) or not isinstance(dim, int) or dim <= 0:
            raise InvalidArguments(
                f"output shape must be a list of positive integers, got {list(shape)}"
            )
    return list(shape)


class InferenceService:
    """Owns one :class:`ModelCache` and the worker pools that feed it.

    Construct once at startup, pass it to whoever needs it, and call
    :meth:`shutdown` on the way out. Loads and forward passes run on
    dedicated thread pools so the event loop is never blocked.
    """

    def __init__(
        self,
        store: ModelStore | None = None,
        max_resident_models: int | None = None,
        load_workers: int | None = None,
        inference_workers: int | None = None,
        resolve_bytes: Callable[[str], bytes] | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store or ModelStore(settings.model_store_dir)
        self._resolve_bytes = resolve_bytes or self.store.resolve_bytes
        self.default_thread_count = settings.default_thread_count
        self.cache = ModelCache(max_resident_models or settings.max_resident_models)
        self._load_pool = ThreadPoolExecutor(
            max_workers=load_workers or settings.load_workers,
            thread_name_prefix="edgeml-load",
        )
        self._run_pool = ThreadPoolExecutor(
            max_workers=inference_workers or settings.inference_workers,
            thread_name_prefix="edgeml-infer",
        )
        self._background: set[asyncio.Task] = set()

    # -------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------

    async def load_model(
        self,
        name: str,
        use_accelerator: bool = False,
        thread_count: int | None = None,
    ) -> LoadResult:
        """Make *name* resident.

        Once submitted the load always runs to completion and updates the
        cache, even if the awaiting caller goes away.
        """
        _check_name(name)
        if not isinstance(use_accelerator, bool):
            raise InvalidArguments("use_accelerator must be a boolean")
        config = AccelerationConfig(
            use_accelerator=use_accelerator,
            thread_count=self.default_thread_count if thread_count is None else thread_count,
        )

        if self.cache.contains(name):
            logger.info("model_already_loaded", model_name=name)
            return LoadResult(success=True, already_resident=True)

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._load_pool, self._load_and_insert, name, config)
        return await asyncio.shield(future)

    def _load_and_insert(self, name: str, config: AccelerationConfig) -> LoadResult:
        handle = load_model(name, config, self._resolve_bytes)
        metadata = ModelMetadata(
            name=name,
            loaded_at=datetime.now(timezone.utc),
            config=config,
            backend=handle.backend,
        )
        if not self.cache.put(name, handle, metadata):
            # lost a race with a concurrent load of the same name
            handle.release()
            logger.info("model_already_loaded", model_name=name)
            return LoadResult(success=True, already_resident=True)
        return LoadResult(success=True, already_resident=False)

    def preload(self, names: Iterable[str], use_accelerator: bool = True) -> list[asyncio.Task]:
        """Start background loads for *names*; failures are only logged."""
        tasks = []
        for name in names:
            task = asyncio.get_running_loop().create_task(
                self._preload_one(name, use_accelerator)
            )
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            tasks.append(task)
        return tasks

    async def _preload_one(self, name: str, use_accelerator: bool) -> None:
        try:
            result = await self.load_model(name, use_accelerator=use_accelerator)
        except InferenceError as exc:
            logger.warning("model_preload_failed", model_name=name, error=str(exc))
            return
        logger.info(
            "model_preloaded",
            model_name=name,
            already_resident=result.already_resident,
        )

    # -------------------------------------------------------------------
    # Inference
    # -------------------------------------------------------------------

    async def run_inference(
        self,
        name: str,
        input_vector: Sequence[float],
        output_shape: Sequence[int] | None = None,
        normalize: str | None = None,
    ) -> InferenceResult:
        _check_name(name)
        values = _check_input(input_vector)
        shape = _check_shape(output_shape)
        if normalize is not None:
            if not isinstance(normalize, str):
                raise InvalidArguments(f"normalize must be a feature kind, got {normalize!r}")
            values = normalize_health_data(values, normalize)

        request = InferenceRequest(
            model_name=name, input_vector=values, expected_output_shape=shape
        )
        entry = self.cache.entry(name)
        if entry is None:
            INFERENCE_COUNT.labels(model_name=name, status=ModelNotLoaded.code).inc()
            raise ModelNotLoaded(f"Model {name} is not loaded")

        # queue per model here, not in the pool, so other models keep the workers
        gate = entry.run_gate
        await gate.acquire()
        loop = asyncio.get_running_loop()
        try:
            future = loop.run_in_executor(self._run_pool, self._run_leased, request)
        except BaseException:
            gate.release()
            raise
        future.add_done_callback(lambda _: gate.release())
        return await asyncio.shield(future)

    def _run_leased(self, request: InferenceRequest) -> InferenceResult:
        name = request.model_name
        try:
            with self.cache.lease(name) as entry:
                result = run_inference(
                    entry.handle, request.input_vector, request.expected_output_shape
                )
        except InferenceError as exc:
            INFERENCE_COUNT.labels(model_name=name, status=exc.code).inc()
            raise
        INFERENCE_LATENCY.labels(model_name=name).observe(result.elapsed_ms / 1000.0)
        INFERENCE_COUNT.labels(model_name=name, status="ok").inc()
        return result

    # -------------------------------------------------------------------
    # Introspection and unloading
    # -------------------------------------------------------------------

    def _info(self, name: str) -> dict[str, Any]:
        entry = self.cache.entry(name)
        if entry is None:
            raise ModelNotLoaded(f"Model {name} is not loaded")
        meta = entry.metadata
        sig = entry.handle.signature
        return {
            "name": meta.name,
            "loaded_at": meta.loaded_at.isoformat(),
            "use_accelerator": meta.config.use_accelerator,
            "thread_count": meta.config.thread_count,
            "backend": meta.backend,
            "input_shape": list(sig.input_shape),
            "output_shape": list(sig.output_shape),
            "input_dtype": sig.input_dtype,
            "output_dtype": sig.output_dtype,
        }

    async def get_model_info(self, name: str) -> dict[str, Any]:
        return self._info(_check_name(name))

    async def list_resident(self) -> list[dict[str, Any]]:
        infos = []
        for name in self.cache.names():
            try:
                infos.append(self._info(name))
            except ModelNotLoaded:
                # unloaded between listing and lookup
                continue
        return infos

    async def unload_model(self, name: str) -> dict[str, Any]:
        was_resident = self.cache.remove(_check_name(name))
        logger.info("model_unloaded", model_name=name, was_resident=was_resident)
        return {"success": True}

    async def unload_all_models(self) -> dict[str, Any]:
        count = self.cache.clear()
        logger.info("models_unloaded", count=count)
        return {"success": True, "count": count}

    def shutdown(self) -> int:
        """Wait for submitted work, then release every resident model."""
        for task in list(self._background):
            task.cancel()
        self._load_pool.shutdown(wait=True)
        self._run_pool.shutdown(wait=True)
        count = self.cache.clear()
        logger.info("inference_service_stopped", released=count)
        return count
