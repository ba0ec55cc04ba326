"""Capability discovery from fal's per-endpoint OpenAPI documents.

The queue API publishes one OpenAPI document per endpoint. The POST operation
on ``/<endpoint_id>`` references an input schema under
``components.schemas``; the properties of that schema tell us which sizing
parameters the model accepts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from fal_image_gateway.errors import SchemaFetchError, SchemaShapeError

logger = logging.getLogger("uvicorn.error")

SIZE_OBJECT_PROPERTY = "image_size"


@dataclass(frozen=True, slots=True)
class ModelCapability:
    submit_endpoint: str
    supports_discrete_size: bool
    supports_aspect_ratio: bool
    uses_size_object: bool


def _schema_name_from_ref(ref: Any) -> str | None:
    if not isinstance(ref, str):
        return None
    name = ref.rsplit("/", 1)[-1].strip()
    return name or None


def _component_schemas(document: dict[str, Any]) -> dict[str, Any]:
    components = document.get("components")
    if not isinstance(components, dict):
        return {}
    schemas = components.get("schemas")
    return schemas if isinstance(schemas, dict) else {}


def _declares_width_and_height(schema: Any) -> bool:
    if not isinstance(schema, dict) or schema.get("type") != "object":
        return False
    properties = schema.get("properties")
    if not isinstance(properties, dict):
        return False
    return bool(properties.get("width")) and bool(properties.get("height"))


def _is_size_object(schema: Any, schemas: dict[str, Any]) -> bool:
    """Match a size object directly or through a single ``$ref`` hop."""
    if not isinstance(schema, dict):
        return False
    if _declares_width_and_height(schema):
        return True
    ref_name = _schema_name_from_ref(schema.get("$ref"))
    if ref_name is None:
        return False
    return _declares_width_and_height(schemas.get(ref_name))


def detect_size_object(prop: Any, schemas: dict[str, Any]) -> bool:
    if not isinstance(prop, dict):
        return False
    if _is_size_object(prop, schemas):
        return True
    alternatives = prop.get("anyOf") or prop.get("oneOf")
    if not isinstance(alternatives, list):
        return False
    return any(_is_size_object(option, schemas) for option in alternatives)


def parse_model_capability(
    document: Any,
    *,
    endpoint_id: str,
    submit_endpoint: str,
) -> ModelCapability:
    if not isinstance(document, dict):
        raise SchemaShapeError(endpoint_id, "Schema document is not a JSON object.")

    path_key = f"/{endpoint_id}"
    paths = document.get("paths")
    path_item = paths.get(path_key) if isinstance(paths, dict) else None
    post = path_item.get("post") if isinstance(path_item, dict) else None
    if not isinstance(post, dict):
        raise SchemaShapeError(
            endpoint_id, f"Could not find POST path '{path_key}' in schema."
        )

    try:
        request_ref = post["requestBody"]["content"]["application/json"]["schema"][
            "$ref"
        ]
    except (KeyError, TypeError):
        request_ref = None
    input_schema_name = _schema_name_from_ref(request_ref)
    if input_schema_name is None:
        raise SchemaShapeError(
            endpoint_id, "Could not find request body reference in schema."
        )

    schemas = _component_schemas(document)
    input_schema = schemas.get(input_schema_name)
    if not isinstance(input_schema, dict):
        raise SchemaShapeError(
            endpoint_id,
            f"Could not find input schema definition '{input_schema_name}'.",
        )
    properties = input_schema.get("properties")
    if not isinstance(properties, dict):
        raise SchemaShapeError(
            endpoint_id, f"Input schema '{input_schema_name}' has no properties."
        )

    width = properties.get("width")
    supports_discrete_size = (
        isinstance(width, dict)
        and "height" in properties
        and width.get("type") == "integer"
    )
    return ModelCapability(
        submit_endpoint=submit_endpoint,
        supports_discrete_size=supports_discrete_size,
        supports_aspect_ratio="aspect_ratio" in properties,
        uses_size_object=detect_size_object(
            properties.get(SIZE_OBJECT_PROPERTY), schemas
        ),
    )


class SchemaFetcher:
    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        schema_url: str,
        queue_base_url: str,
    ) -> None:
        self._client = client
        self._schema_url = schema_url
        self._queue_base_url = queue_base_url.rstrip("/")

    def submit_endpoint_for(self, endpoint_id: str) -> str:
        return f"{self._queue_base_url}/{endpoint_id.strip('/')}"

    async def fetch(self, endpoint_id: str) -> ModelCapability:
        logger.debug("schema_fetch_start endpoint_id=%s", endpoint_id)
        try:
            response = await self._client.get(
                self._schema_url,
                params={"endpoint_id": endpoint_id},
                headers={"Accept": "application/json"},
            )
        except httpx.RequestError as exc:
            raise SchemaFetchError(
                endpoint_id,
                f"Failed to fetch OpenAPI schema for {endpoint_id}: "
                f"{exc.__class__.__name__}: {exc}",
            ) from exc

        if not response.is_success:
            raise SchemaFetchError(
                endpoint_id,
                f"Failed to fetch OpenAPI schema for {endpoint_id}: "
                f"{response.status_code} {response.reason_phrase}",
            )
        try:
            document = response.json()
        except ValueError as exc:
            raise SchemaFetchError(
                endpoint_id, f"OpenAPI schema for {endpoint_id} is not valid JSON."
            ) from exc

        capability = parse_model_capability(
            document,
            endpoint_id=endpoint_id,
            submit_endpoint=self.submit_endpoint_for(endpoint_id),
        )
        logger.debug(
            "schema_parse_complete endpoint_id=%s discrete_size=%s aspect_ratio=%s size_object=%s",
            endpoint_id,
            capability.supports_discrete_size,
            capability.supports_aspect_ratio,
            capability.uses_size_object,
        )
        return capability
