"""CLI entrypoint: python -m edgeml_cli <command>."""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

import click
import numpy as np

from edgeml.core.config import get_settings
from edgeml.core.errors import InferenceError
from edgeml.core.logging import setup_logging
from edgeml.inference.store import ModelStore


@click.group()
@click.option("--store", "store_dir", default=None, help="Model bundle directory")
@click.pass_context
def cli(ctx: click.Context, store_dir: str | None) -> None:
    """Edge inference runtime CLI."""
    settings = get_settings()
    setup_logging(settings.log_level)
    ctx.obj = ModelStore(store_dir or settings.model_store_dir)


def _run(store: ModelStore, coro_factory) -> Any:
    """Run *coro_factory(service)* against a throwaway service."""
    from edgeml.inference.service import InferenceService

    service = InferenceService(store=store, max_resident_models=1)
    try:
        return asyncio.run(coro_factory(service))
    except InferenceError as exc:
        click.echo(f"ERROR: {exc}", err=True)
        sys.exit(1)
    finally:
        service.shutdown()


# -------------------------------------------------------------------
# Bundles
# -------------------------------------------------------------------

@cli.command()
@click.option("--name", required=True, help="Bundle file name, e.g. stress_v1.pt")
@click.option("--architecture", default="stress_mlp", show_default=True)
@click.option("--input-size", default=8, show_default=True, type=int)
@click.option("--output-size", default=3, show_default=True, type=int)
@click.option("--seed", default=0, show_default=True, type=int)
@click.pass_obj
def package(
    store: ModelStore,
    name: str,
    architecture: str,
    input_size: int,
    output_size: int,
    seed: int,
) -> None:
    """Export a reference architecture with fresh weights into the store."""
    import os

    import torch

    from edgeml.inference.model import build_architecture, export_bundle

    torch.manual_seed(seed)
    try:
        module = build_architecture(architecture, input_size, output_size)
    except ValueError as exc:
        click.echo(f"ERROR: {exc}", err=True)
        sys.exit(1)
    try:
        path = store.path_for(name)
    except InferenceError as exc:
        click.echo(f"ERROR: {exc}", err=True)
        sys.exit(1)
    os.makedirs(store.root, exist_ok=True)
    export_bundle(module, (1, input_size), path)
    click.echo(f"Packaged {architecture} -> {path}")


@cli.command()
@click.argument("bundle_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--name", default=None, help="Store under a different file name")
@click.pass_obj
def add(store: ModelStore, bundle_path: str, name: str | None) -> None:
    """Copy an existing bundle into the store."""
    try:
        stored = store.add(bundle_path, name=name)
    except InferenceError as exc:
        click.echo(f"ERROR: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Added {stored}")


@cli.command("list")
@click.pass_obj
def list_cmd(store: ModelStore) -> None:
    """List bundles in the store."""
    names = store.list_models()
    if not names:
        click.echo("No models in store.")
        return
    for name in names:
        click.echo(f"  {name}")


# -------------------------------------------------------------------
# Loading and inference
# -------------------------------------------------------------------

@cli.command()
@click.argument("name")
@click.option("--accelerator/--no-accelerator", default=False)
@click.option("--threads", default=None, type=click.IntRange(min=1))
@click.pass_obj
def info(store: ModelStore, name: str, accelerator: bool, threads: int | None) -> None:
    """Load a model and print its tensor signature."""

    async def go(service):
        await service.load_model(name, use_accelerator=accelerator, thread_count=threads)
        return await service.get_model_info(name)

    click.echo(json.dumps(_run(store, go), indent=2))


@cli.command()
@click.argument("name")
@click.option("--input", "input_json", required=True, help="JSON list of numbers")
@click.option("--output-shape", default="[]", help="JSON list of ints (diagnostic)")
@click.option("--normalize", default=None, help="Health data kind to scale the input as")
@click.option("--accelerator/--no-accelerator", default=False)
@click.pass_obj
def predict(
    store: ModelStore,
    name: str,
    input_json: str,
    output_shape: str,
    normalize: str | None,
    accelerator: bool,
) -> None:
    """Load a model and run one feature vector through it."""
    try:
        values = json.loads(input_json)
        shape = json.loads(output_shape)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc

    async def go(service):
        await service.load_model(name, use_accelerator=accelerator)
        return await service.run_inference(name, values, shape, normalize=normalize)

    result = _run(store, go)
    click.echo(json.dumps(result.to_dict(), indent=2))


@cli.command()
@click.argument("name")
@click.option("--iterations", default=100, show_default=True, type=click.IntRange(min=1))
@click.option("--warmup", default=10, show_default=True, type=click.IntRange(min=0))
@click.option("--accelerator/--no-accelerator", default=False)
@click.pass_obj
def benchmark(
    store: ModelStore, name: str, iterations: int, warmup: int, accelerator: bool
) -> None:
    """Measure forward-pass latency on random input."""

    async def go(service):
        await service.load_model(name, use_accelerator=accelerator)
        model_info = await service.get_model_info(name)
        size = int(np.prod(model_info["input_shape"]))
        rng = np.random.default_rng(0)
        for _ in range(warmup):
            await service.run_inference(name, rng.standard_normal(size).tolist())
        times = []
        for _ in range(iterations):
            result = await service.run_inference(name, rng.standard_normal(size).tolist())
            times.append(result.elapsed_ms)
        return model_info["backend"], times

    backend, times = _run(store, go)
    arr = np.asarray(times)
    mean = float(arr.mean())
    stats = {
        "model_name": name,
        "backend": backend,
        "iterations": iterations,
        "average_time_ms": round(mean, 4),
        "std_time_ms": round(float(arr.std()), 4),
        "min_time_ms": round(float(arr.min()), 4),
        "max_time_ms": round(float(arr.max()), 4),
        "p95_time_ms": round(float(np.percentile(arr, 95)), 4),
        "throughput_per_s": round(1000.0 / mean, 2) if mean > 0 else None,
    }
    click.echo(json.dumps(stats, indent=2))


# -------------------------------------------------------------------
# Serving
# -------------------------------------------------------------------

@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.pass_obj
def serve(store: ModelStore, host: str, port: int) -> None:
    """Serve the HTTP API and request/response channel."""
    import os

    import uvicorn

    os.environ["MODEL_STORE_DIR"] = store.root
    uvicorn.run("edgeml.api.main:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    cli()
