"""Error kinds surfaced to callers of the inference runtime."""

from __future__ import annotations

from typing import Any


class InferenceError(Exception):
    """Base class for request-terminating errors.

    Each subclass carries a stable ``code`` that the API and channel layers
    put on the wire next to the human-readable message.
    """

    code = "INFERENCE_RUNTIME_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class InvalidArguments(InferenceError):
    code = "INVALID_ARGUMENTS"


class ModelNotFound(InferenceError):
    code = "MODEL_NOT_FOUND"


class ModelLoadFailed(InferenceError):
    code = "MODEL_LOAD_ERROR"


class ModelNotLoaded(InferenceError):
    code = "MODEL_NOT_LOADED"


class InvalidInputShape(InferenceError):
    code = "INVALID_INPUT_SHAPE"


class InferenceFailed(InferenceError):
    code = "INFERENCE_ERROR"


class BackendUnavailable(Exception):
    """An acceleration backend could not be attached. Never surfaced."""
