from __future__ import annotations

import json

from fal_image_gateway.errors import AuthenticationError, GenerationTimeoutError
from fal_image_gateway.formatter import (
    MODEL_OWNER,
    build_images_response,
    build_models_response,
    error_response,
    server_error_response,
)
from fal_image_gateway.jobs import JobResult


def test_images_response_falls_back_to_caller_prompt() -> None:
    body = build_images_response(
        JobResult(urls=["a", "b"]), prompt="a cat", created=1700000000
    )
    assert body == {
        "created": 1700000000,
        "data": [
            {"url": "a", "revised_prompt": "a cat"},
            {"url": "b", "revised_prompt": "a cat"},
        ],
    }


def test_models_response_shape() -> None:
    body = build_models_response(["flux-dev"], created=42)
    assert body["object"] == "list"
    assert body["data"] == [
        {
            "id": "flux-dev",
            "object": "model",
            "created": 42,
            "owned_by": MODEL_OWNER,
            "permission": [],
            "root": "flux-dev",
            "parent": None,
        }
    ]


def test_error_response_adds_challenge_only_for_401() -> None:
    unauthorized = error_response(AuthenticationError("Invalid API key."))
    assert unauthorized.status_code == 401
    assert unauthorized.headers["www-authenticate"] == "Bearer"
    assert json.loads(unauthorized.body) == {
        "error": {"message": "Invalid API key.", "type": "authentication_error"}
    }

    timeout = error_response(GenerationTimeoutError(45))
    assert timeout.status_code == 500
    assert "www-authenticate" not in timeout.headers


def test_server_error_response() -> None:
    response = server_error_response()
    assert response.status_code == 500
    assert json.loads(response.body)["error"]["type"] == "server_error"
