"""POST /api/generate: image to particles, as JSON or as an SSE progress stream."""

from __future__ import annotations

import asyncio
import base64
import binascii
import functools
import json
import logging
from collections.abc import AsyncGenerator
from dataclasses import replace

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from app.config import Settings
from app.dependencies import get_coordinator, get_settings
from app.engine.config import GenerationConfig, QualityPreset, SamplingStrategy, StrategyKind
from app.engine.coordinator import GenerationCoordinator, GenerationResult
from app.engine.errors import (
    GenerationCancelledError,
    GenerationInProgressError,
    GeneratorError,
    InvalidConfigurationError,
    InvalidImageError,
)
from app.engine.pixels import PixelAccessor
from app.models.requests import GenerateRequest
from app.models.responses import CancelResponse, GenerateResponse, ParticleModel

logger = logging.getLogger(__name__)

router = APIRouter()


_SENTINEL = object()  # marks end of queue


def decode_image(data: str) -> PixelAccessor:
    if data.startswith("data:"):
        _, _, data = data.partition(",")
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError(f"image is not valid base64: {e}") from e
    if not raw:
        raise InvalidImageError("empty image payload")
    return PixelAccessor.from_encoded(raw)


def build_config(req: GenerateRequest, settings: Settings) -> GenerationConfig:
    try:
        preset = req.quality or QualityPreset(settings.default_quality)
    except ValueError as e:
        raise InvalidConfigurationError(f"unknown default quality '{settings.default_quality}'") from e
    config = GenerationConfig.for_preset(preset, display_mode=req.display_mode)

    strategy = config.sampling_strategy
    if req.strategy:
        strategy = SamplingStrategy.parse(req.strategy)
    if req.algorithm is not None and strategy.algorithm is None:
        if req.strategy and strategy.kind is not StrategyKind.ADVANCED:
            raise InvalidConfigurationError(f"algorithm given for non-advanced strategy '{strategy.name}'")
        strategy = SamplingStrategy.advanced(req.algorithm)

    overrides: dict[str, object] = {
        "sampling_strategy": strategy,
        "max_concurrent_operations": max(1, min(config.max_concurrent_operations, settings.max_concurrency)),
    }
    if req.target_count is not None:
        overrides["target_particle_count"] = req.target_count
    if req.enable_caching is not None:
        overrides["enable_caching"] = req.enable_caching
    if req.seed is not None:
        overrides["seed"] = req.seed
    return replace(config, **overrides)


def _screen_size(req: GenerateRequest, accessor: PixelAccessor) -> tuple[float, float]:
    return (
        req.screen_width if req.screen_width is not None else float(accessor.width),
        req.screen_height if req.screen_height is not None else float(accessor.height),
    )


def error_status(error: Exception) -> int:
    if isinstance(error, (InvalidImageError, InvalidConfigurationError)):
        return 422
    if isinstance(error, (GenerationInProgressError, GenerationCancelledError)):
        return 409
    return 500


def _http_error(error: Exception) -> HTTPException:
    if isinstance(error, GenerationCancelledError):
        return HTTPException(status_code=409, detail="cancelled")
    return HTTPException(status_code=error_status(error), detail=str(error))


def build_response(
    result: GenerationResult,
    accessor: PixelAccessor,
    config: GenerationConfig,
    include_particles: bool = True,
) -> GenerateResponse:
    particles = [ParticleModel(**p.to_dict()) for p in result.particles] if include_particles else []
    return GenerateResponse(
        particles=particles,
        sample_count=len(result.samples),
        processing_time_ms=result.elapsed_ms,
        from_cache=result.from_cache,
        image_width=accessor.width,
        image_height=accessor.height,
        strategy=config.sampling_strategy.name,
        analysis=result.analysis.summary() if result.analysis is not None else None,
    )


async def _stream_generate(
    req: GenerateRequest,
    coordinator: GenerationCoordinator,
    settings: Settings,
) -> AsyncGenerator[str, None]:
    """Drive coordinator.generate_result() in a thread, yielding SSE events as stages finish."""
    try:
        accessor = decode_image(req.image)
        config = build_config(req, settings)
    except GeneratorError as e:
        data = json.dumps({"type": "error", "message": str(e), "status": error_status(e)})
        yield f"event: error\ndata: {data}\n\n"
        return

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    results: list[GenerationResult] = []
    errors: list[Exception] = []

    def _on_progress(fraction: float, stage: str) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, {"type": "progress", "progress": round(fraction, 4), "stage": stage})

    def _run() -> None:
        """Sync generation in thread; pushes progress dicts onto the async queue."""
        try:
            results.append(
                coordinator.generate_result(accessor, config, _screen_size(req, accessor), progress=_on_progress)
            )
        except Exception as e:  # reported to the client as an error event
            errors.append(e)
        finally:
            loop.call_soon_threadsafe(queue.put_nowait, _SENTINEL)

    # Start generation in a thread so the event loop stays free to flush SSE
    loop.run_in_executor(None, _run)

    while True:
        item = await queue.get()
        if item is _SENTINEL:
            break
        yield f"event: progress\ndata: {json.dumps(item)}\n\n"

    if errors:
        error = errors[0]
        if not isinstance(error, GeneratorError):
            logger.exception("Generation failed", exc_info=error)
        message = "cancelled" if isinstance(error, GenerationCancelledError) else str(error)
        data = json.dumps({"type": "error", "message": message, "status": error_status(error)})
        yield f"event: error\ndata: {data}\n\n"
        return

    response = build_response(results[0], accessor, config, req.include_particles)
    yield f"event: result\ndata: {response.model_dump_json()}\n\n"

    yield f"event: done\ndata: {json.dumps({'type': 'done'})}\n\n"


@router.post("/generate/stream")
async def generate_stream(
    req: GenerateRequest,
    coordinator: GenerationCoordinator = Depends(get_coordinator),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    return StreamingResponse(
        _stream_generate(req, coordinator, settings),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/generate", response_model=GenerateResponse)
async def generate(
    req: GenerateRequest,
    coordinator: GenerationCoordinator = Depends(get_coordinator),
    settings: Settings = Depends(get_settings),
) -> GenerateResponse:
    try:
        accessor = decode_image(req.image)
        config = build_config(req, settings)
        run = functools.partial(coordinator.generate_result, accessor, config, _screen_size(req, accessor))
        result = await asyncio.get_running_loop().run_in_executor(None, run)
    except GeneratorError as e:
        logger.info("Generation rejected: %s", e)
        raise _http_error(e) from e

    return build_response(result, accessor, config, req.include_particles)


@router.post("/generate/cancel", response_model=CancelResponse)
async def cancel(coordinator: GenerationCoordinator = Depends(get_coordinator)) -> CancelResponse:
    return CancelResponse(cancelled=coordinator.cancel_generation())
