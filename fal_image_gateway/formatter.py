from __future__ import annotations

import time
from typing import Any

from fastapi.responses import JSONResponse

from fal_image_gateway.errors import GatewayError
from fal_image_gateway.jobs import JobResult

MODEL_OWNER = "fal-openai-adapter"


def build_images_response(
    result: JobResult,
    *,
    prompt: str,
    created: int | None = None,
) -> dict[str, Any]:
    revised_prompt = result.revised_prompt or prompt
    return {
        "created": int(time.time()) if created is None else created,
        "data": [{"url": url, "revised_prompt": revised_prompt} for url in result.urls],
    }


def build_models_response(
    model_names: list[str],
    *,
    created: int | None = None,
) -> dict[str, Any]:
    created_at = int(time.time()) if created is None else created
    return {
        "object": "list",
        "data": [
            {
                "id": name,
                "object": "model",
                "created": created_at,
                "owned_by": MODEL_OWNER,
                "permission": [],
                "root": name,
                "parent": None,
            }
            for name in model_names
        ],
    }


def error_response(exc: GatewayError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(),
        headers=headers,
    )


def server_error_response(message: str = "Internal Server Error") -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": {"message": message, "type": "server_error"}},
    )
