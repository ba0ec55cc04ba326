"""Error taxonomy shared by the gateway core and the HTTP layer.

Every error a caller can observe derives from :class:`GatewayError`, which
carries the HTTP status and the OpenAI-style ``type`` string used in the
``{"error": {"message", "type"}}`` envelope. Capability discovery failures
derive from :class:`CapabilityError` instead; they never reach the caller
directly and are turned into a :class:`ConfigurationError` once the cache
has nothing to fall back on.
"""

from __future__ import annotations

from typing import Any

from fastapi import status


class GatewayError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type: str = "server_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"error": {"message": self.message, "type": self.error_type}}


class AuthenticationError(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "authentication_error"


class ValidationError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "invalid_request_error"


class ConfigurationError(GatewayError):
    status_code = status.HTTP_404_NOT_FOUND
    error_type = "invalid_request_error"

    def __init__(self, model_name: str) -> None:
        super().__init__(
            f"Model '{model_name}' not found or its configuration failed to load."
        )
        self.model_name = model_name


class UpstreamSubmissionError(GatewayError):
    error_type = "fal_api_error"

    def __init__(self, detail: str, *, upstream_status: int | None = None) -> None:
        super().__init__(f"Fal API submission error: {detail}")
        self.detail = detail
        self.upstream_status = upstream_status


class UpstreamProtocolError(GatewayError):
    error_type = "fal_api_error"


class GenerationFailedError(GatewayError):
    error_type = "generation_failed"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Image generation failed: {reason}")
        self.reason = reason


class GenerationTimeoutError(GatewayError):
    error_type = "generation_timeout"

    def __init__(self, attempts: int) -> None:
        super().__init__("Image generation timed out or returned no images.")
        self.attempts = attempts


class CapabilityError(Exception):
    def __init__(self, endpoint_id: str, message: str) -> None:
        super().__init__(message)
        self.endpoint_id = endpoint_id


class SchemaFetchError(CapabilityError):
    """The schema document could not be retrieved or decoded."""


class SchemaShapeError(CapabilityError):
    """The schema document lacks the paths needed to read capabilities."""
