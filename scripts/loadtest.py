#!/usr/bin/env python3
"""Load testing harness for the /inference endpoint.

Usage:
    python scripts/loadtest.py --url http://localhost:8000 --model_name stress_v1.pt \
        --concurrency 10 --total 200
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import time
from datetime import datetime, timezone

import httpx
import numpy as np


async def _send_request(
    client: httpx.AsyncClient,
    url: str,
    payload: dict,
) -> tuple[float, float] | None:
    """POST /inference; return (round-trip ms, forward-pass ms) or None on error."""
    start = time.perf_counter()
    try:
        resp = await client.post(f"{url}/inference", json=payload, timeout=30.0)
    except httpx.HTTPError:
        return None
    elapsed = (time.perf_counter() - start) * 1000.0
    if resp.status_code != 200:
        return None
    return elapsed, resp.json()["elapsed_ms"]


async def run_loadtest(
    url: str,
    concurrency: int,
    total_requests: int,
    model_name: str,
    use_accelerator: bool,
) -> dict:
    """Load the model, execute the load test and return a summary dict."""
    async with httpx.AsyncClient() as client:
        resp = await client.post(
            f"{url}/models/load",
            json={"model_name": model_name, "use_accelerator": use_accelerator},
            timeout=120.0,
        )
        resp.raise_for_status()
        info = (await client.get(f"{url}/models/{model_name}")).json()

        size = int(np.prod(info["input_shape"]))
        rng = np.random.default_rng()
        semaphore = asyncio.Semaphore(concurrency)
        round_trips: list[float] = []
        forward: list[float] = []
        errors = 0

        async def _bounded_request() -> None:
            nonlocal errors
            payload = {"model_name": model_name, "input": rng.random(size).tolist()}
            async with semaphore:
                result = await _send_request(client, url, payload)
            if result is None:
                errors += 1
            else:
                round_trips.append(result[0])
                forward.append(result[1])

        wall_start = time.perf_counter()
        await asyncio.gather(*(_bounded_request() for _ in range(total_requests)))
        wall_s = time.perf_counter() - wall_start

    lats = np.array(round_trips) if round_trips else np.array([0.0])
    fwd = np.array(forward) if forward else np.array([0.0])
    return {
        "url": url,
        "model_name": model_name,
        "backend": info["backend"],
        "concurrency": concurrency,
        "total_requests": total_requests,
        "successful": len(round_trips),
        "errors": errors,
        "wall_time_s": round(wall_s, 3),
        "qps": round(len(round_trips) / wall_s, 2) if wall_s > 0 else 0,
        "p50_ms": round(float(np.percentile(lats, 50)), 3),
        "p95_ms": round(float(np.percentile(lats, 95)), 3),
        "p99_ms": round(float(np.percentile(lats, 99)), 3),
        "mean_ms": round(float(lats.mean()), 3),
        "forward_mean_ms": round(float(fwd.mean()), 3),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Load test the /inference endpoint")
    parser.add_argument("--url", default="http://localhost:8000", help="Base URL")
    parser.add_argument("--concurrency", type=int, default=10)
    parser.add_argument("--total", type=int, default=100, help="Total requests")
    parser.add_argument("--model_name", required=True)
    parser.add_argument("--accelerator", action="store_true")
    args = parser.parse_args()

    print(
        f"Running load test: {args.total} requests, "
        f"concurrency={args.concurrency}, url={args.url}"
    )
    report = asyncio.run(
        run_loadtest(args.url, args.concurrency, args.total, args.model_name, args.accelerator)
    )

    print("\n=== Load Test Report ===")
    for k, v in report.items():
        print(f"  {k}: {v}")

    os.makedirs("reports", exist_ok=True)
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    report_path = f"reports/loadtest_{ts}.json"
    with open(report_path, "w") as f:
        json.dump(report, f, indent=2)
    print(f"\nReport saved to {report_path}")


if __name__ == "__main__":
    main()
