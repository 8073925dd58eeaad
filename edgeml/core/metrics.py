"""Prometheus metrics definitions."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

MODEL_LOAD_LATENCY = Histogram(
    "model_load_seconds",
    "Time spent loading a model bundle, including warm-up",
    labelnames=["backend"],
)

MODEL_LOAD_COUNT = Counter(
    "model_load_total",
    "Model load attempts by outcome",
    labelnames=["outcome"],
)

INFERENCE_LATENCY = Histogram(
    "inference_latency_seconds",
    "Latency of the forward pass alone in seconds",
    labelnames=["model_name"],
)

INFERENCE_COUNT = Counter(
    "inference_total",
    "Total inference requests",
    labelnames=["model_name", "status"],
)

MODEL_EVICTIONS = Counter(
    "model_evictions_total",
    "Resident models released from the cache",
    labelnames=["reason"],
)

RESIDENT_MODELS = Gauge(
    "resident_models",
    "Number of models currently resident in the cache",
)

BACKEND_FALLBACKS = Counter(
    "backend_fallback_total",
    "Acceleration backends skipped during model load",
    labelnames=["backend"],
)
