"""Model lifecycle and inference endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from edgeml.core.logging import get_logger
from edgeml.inference.service import InferenceService

logger = get_logger(__name__)
router = APIRouter()


def _service(request: Request) -> InferenceService:
    return request.app.state.service


# -------------------------------------------------------------------
# Request / Response schemas
# -------------------------------------------------------------------

class LoadRequest(BaseModel):
    model_name: str = Field(..., min_length=1)
    use_accelerator: bool = False
    thread_count: Optional[int] = Field(None, gt=0)


class LoadResponse(BaseModel):
    success: bool
    already_resident: bool


class InferRequest(BaseModel):
    model_name: str = Field(..., min_length=1)
    input: list[float]
    output_shape: list[int] = Field(default_factory=list)
    normalize: Optional[str] = None


class InferResponse(BaseModel):
    output: list[float]
    elapsed_ms: float
    output_shape: list[int]


class ModelInfo(BaseModel):
    name: str
    loaded_at: str
    use_accelerator: bool
    thread_count: int
    backend: str
    input_shape: list[int]
    output_shape: list[int]
    input_dtype: str
    output_dtype: str


class UnloadResponse(BaseModel):
    success: bool
    count: Optional[int] = None


# -------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------

@router.post("/models/load", response_model=LoadResponse)
async def load(req: LoadRequest, request: Request) -> LoadResponse:
    """Load a model bundle into the resident cache."""
    result = await _service(request).load_model(
        req.model_name,
        use_accelerator=req.use_accelerator,
        thread_count=req.thread_count,
    )
    return LoadResponse(**result.to_dict())


@router.post("/inference", response_model=InferResponse)
async def infer(req: InferRequest, request: Request) -> InferResponse:
    """Run one feature vector through a resident model."""
    result = await _service(request).run_inference(
        req.model_name,
        req.input,
        output_shape=req.output_shape,
        normalize=req.normalize,
    )
    return InferResponse(**result.to_dict())


@router.get("/models", response_model=list[ModelInfo])
async def list_resident(request: Request) -> list[ModelInfo]:
    """Resident models, oldest load first."""
    return [ModelInfo(**info) for info in await _service(request).list_resident()]


@router.get("/models/{model_name}", response_model=ModelInfo)
async def model_info(model_name: str, request: Request) -> ModelInfo:
    return ModelInfo(**await _service(request).get_model_info(model_name))


@router.delete("/models/{model_name}", response_model=UnloadResponse, response_model_exclude_none=True)
async def unload(model_name: str, request: Request) -> UnloadResponse:
    return UnloadResponse(**await _service(request).unload_model(model_name))


@router.delete("/models", response_model=UnloadResponse)
async def unload_all(request: Request) -> UnloadResponse:
    return UnloadResponse(**await _service(request).unload_all_models())
