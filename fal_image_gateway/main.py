from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from fal_image_gateway import __version__
from fal_image_gateway.capabilities import CapabilityCache, SchemaFetcher
from fal_image_gateway.errors import ConfigurationError, GatewayError, ValidationError
from fal_image_gateway.formatter import (
    build_images_response,
    build_models_response,
    error_response,
    server_error_response,
)
from fal_image_gateway.gateway.auth import CredentialSelector
from fal_image_gateway.jobs import JobDriver
from fal_image_gateway.registry import SupportedModelRegistry, load_model_registry
from fal_image_gateway.settings import Settings, get_settings
from fal_image_gateway.translator import (
    build_submission_payload,
    parse_generation_request,
)

app = FastAPI(
    title="fal Image Gateway",
    description="OpenAI-compatible image generation API backed by fal's queue.",
    version=__version__,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

logger = logging.getLogger("uvicorn.error")


def _build_http_client(settings: Settings) -> httpx.AsyncClient:
    connect_timeout = max(0.1, settings.http_connect_timeout_seconds)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            timeout=max(0.1, settings.http_timeout_seconds),
            connect=connect_timeout,
        ),
        limits=httpx.Limits(max_connections=256, max_keepalive_connections=64),
    )


@app.middleware("http")
async def access_log_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        logger.info(
            "request_complete method=%s path=%s status=%d duration_ms=%.1f",
            request.method,
            request.url.path,
            status_code,
            (time.perf_counter() - started) * 1000.0,
        )


@app.on_event("startup")
async def startup() -> None:
    settings = get_settings()
    if settings.debug_mode:
        logger.setLevel(logging.DEBUG)
    logger.info("debug_mode enabled=%s", settings.debug_mode)

    credential_selector = CredentialSelector.from_settings(settings)
    registry = load_model_registry(
        pairs=settings.supported_models_list,
        path=settings.supported_models_path,
    )
    client = _build_http_client(settings)
    fetcher = SchemaFetcher(
        client=client,
        schema_url=settings.fal_schema_url,
        queue_base_url=settings.fal_queue_base_url,
    )
    capability_cache = CapabilityCache(
        registry=registry,
        fetcher=fetcher,
        ttl_seconds=settings.capability_ttl_seconds,
    )

    app.state.settings = settings
    app.state.http_client = client
    app.state.credential_selector = credential_selector
    app.state.model_registry = registry
    app.state.capability_cache = capability_cache
    app.state.job_driver = JobDriver(
        client=client,
        poll_interval_seconds=settings.poll_interval_seconds,
        max_attempts=settings.poll_max_attempts,
    )
    app.state.started_at = int(time.time())

    await capability_cache.warm_up()
    logger.info(
        "startup complete models=%d upstream_keys=%d default_model=%s poll_interval=%.1f poll_attempts=%d",
        len(registry),
        credential_selector.pool_size,
        settings.default_model,
        settings.poll_interval_seconds,
        settings.poll_max_attempts,
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    client: httpx.AsyncClient | None = getattr(app.state, "http_client", None)
    if client is not None:
        await client.aclose()
    logger.info("shutdown complete")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/v1/models")
async def models() -> dict[str, Any]:
    registry: SupportedModelRegistry = app.state.model_registry
    return build_models_response(registry.model_names(), created=app.state.started_at)


async def _read_json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise ValidationError("Missing or invalid JSON request body.") from exc


@app.post("/v1/images/generations")
async def image_generations(request: Request) -> dict[str, Any]:
    settings: Settings = app.state.settings
    selector: CredentialSelector = app.state.credential_selector
    cache: CapabilityCache = app.state.capability_cache
    driver: JobDriver = app.state.job_driver

    auth = selector.authorize(request.headers.get("authorization"))
    payload = await _read_json_body(request)
    logger.debug("generation_request payload=%s", payload)
    generation_request = parse_generation_request(
        payload, default_model=settings.default_model
    )

    capability = await cache.resolve(generation_request.model)
    if capability is None:
        raise ConfigurationError(generation_request.model)

    submission = build_submission_payload(generation_request, capability)
    result = await driver.run(
        capability,
        submission,
        auth.upstream_credential,
        num_images=generation_request.n,
    )
    return build_images_response(result, prompt=generation_request.prompt)


@app.exception_handler(GatewayError)
async def gateway_error_handler(_: Request, exc: GatewayError) -> JSONResponse:
    return error_response(exc)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": str(exc.detail),
                "type": "invalid_request_error",
            }
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error method=%s path=%s error=%r",
        request.method,
        request.url.path,
        exc,
    )
    return server_error_response()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "fal_image_gateway.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
    )


if __name__ == "__main__":
    run()
