from __future__ import annotations

from fal_image_gateway.capabilities.cache import CachedCapability, CapabilityCache
from fal_image_gateway.capabilities.schema import (
    ModelCapability,
    SchemaFetcher,
    parse_model_capability,
)

__all__ = [
    "CachedCapability",
    "CapabilityCache",
    "ModelCapability",
    "SchemaFetcher",
    "parse_model_capability",
]
