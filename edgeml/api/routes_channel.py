"""Method-call channel: tagged request/response envelopes over HTTP or WebSocket.

Each request names a method and carries its arguments; the response echoes
the ``request_id`` so callers that pipeline requests over one WebSocket can
match replies, which arrive in completion order.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from edgeml.core.errors import InferenceError, InvalidArguments
from edgeml.core.logging import bind_request_context, get_logger
from edgeml.inference.service import InferenceService

logger = get_logger(__name__)
router = APIRouter(prefix="/channel")


class ChannelRequest(BaseModel):
    request_id: str = Field(..., min_length=1)
    method: str = Field(..., min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)


class ChannelResponse(BaseModel):
    request_id: Optional[str] = None
    method: Optional[str] = None
    success: bool
    result: Optional[dict[str, Any]] = None
    error: Optional[dict[str, Any]] = None


# -------------------------------------------------------------------
# Method handlers
# -------------------------------------------------------------------

Handler = Callable[[InferenceService, dict[str, Any]], Awaitable[dict[str, Any]]]


async def _load_model(service: InferenceService, args: dict[str, Any]) -> dict[str, Any]:
    result = await service.load_model(
        args.get("modelName"),
        use_accelerator=args.get("useAccelerator", False),
        thread_count=args.get("threadCount"),
    )
    return result.to_dict()


async def _run_inference(service: InferenceService, args: dict[str, Any]) -> dict[str, Any]:
    if "inputData" not in args:
        raise InvalidArguments("Invalid inference arguments: inputData is required")
    result = await service.run_inference(
        args.get("modelName"),
        args["inputData"],
        output_shape=args.get("outputShape"),
        normalize=args.get("normalize"),
    )
    return {**result.to_dict(), "model_name": args["modelName"]}


async def _get_model_info(service: InferenceService, args: dict[str, Any]) -> dict[str, Any]:
    return await service.get_model_info(args.get("modelName"))


async def _unload_model(service: InferenceService, args: dict[str, Any]) -> dict[str, Any]:
    return await service.unload_model(args.get("modelName"))


async def _unload_all_models(service: InferenceService, args: dict[str, Any]) -> dict[str, Any]:
    return await service.unload_all_models()


METHODS: dict[str, Handler] = {
    "loadModel": _load_model,
    "runInference": _run_inference,
    "getModelInfo": _get_model_info,
    "unloadModel": _unload_model,
    "unloadAllModels": _unload_all_models,
}


def _error(req: ChannelRequest | None, code: str, message: str) -> ChannelResponse:
    return ChannelResponse(
        request_id=req.request_id if req else None,
        method=req.method if req else None,
        success=False,
        error={"code": code, "message": message},
    )


async def dispatch(service: InferenceService, req: ChannelRequest) -> ChannelResponse:
    """Run one channel request. Never raises."""
    bind_request_context(request_id=req.request_id, method=req.method)
    handler = METHODS.get(req.method)
    if handler is None:
        return _error(req, "NOT_IMPLEMENTED", f"Unknown method {req.method}")
    try:
        result = await handler(service, req.arguments)
    except InferenceError as exc:
        logger.info("channel_request_failed", code=exc.code)
        return ChannelResponse(
            request_id=req.request_id,
            method=req.method,
            success=False,
            error=exc.to_dict(),
        )
    except Exception as exc:
        logger.exception("channel_request_crashed")
        return _error(req, "INTERNAL_ERROR", str(exc))
    return ChannelResponse(
        request_id=req.request_id, method=req.method, success=True, result=result
    )


def parse_envelope(raw: str) -> ChannelRequest:
    try:
        return ChannelRequest.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as exc:
        raise InvalidArguments(f"Malformed channel request: {exc}") from exc


# -------------------------------------------------------------------
# Transports
# -------------------------------------------------------------------

@router.post("", response_model=ChannelResponse, response_model_exclude_none=True)
async def channel_call(req: ChannelRequest, request: Request) -> ChannelResponse:
    """Single request, single tagged response."""
    return await dispatch(request.app.state.service, req)


@router.websocket("/ws")
async def channel_socket(websocket: WebSocket) -> None:
    """Pipelined requests; each reply is sent as soon as it completes."""
    await websocket.accept()
    service: InferenceService = websocket.app.state.service
    send_lock = asyncio.Lock()
    pending: set[asyncio.Task] = set()

    async def reply(resp: ChannelResponse) -> None:
        async with send_lock:
            await websocket.send_text(resp.model_dump_json(exclude_none=True))

    async def handle(req: ChannelRequest) -> None:
        resp = await dispatch(service, req)
        try:
            await reply(resp)
        except (WebSocketDisconnect, RuntimeError):
            logger.info("channel_reply_dropped", request_id=req.request_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                req = parse_envelope(raw)
            except InvalidArguments as exc:
                await reply(_error(None, exc.code, exc.message))
                continue
            task = asyncio.create_task(handle(req))
            pending.add(task)
            task.add_done_callback(pending.discard)
    except WebSocketDisconnect:
        logger.info("channel_disconnected", pending=len(pending))
