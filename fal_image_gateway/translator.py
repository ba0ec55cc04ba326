from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

from fal_image_gateway.capabilities.schema import ModelCapability
from fal_image_gateway.errors import ValidationError

MIN_IMAGES = 1
MAX_IMAGES = 4
DEFAULT_ASPECT_RATIO = "1:1"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    prompt: str
    model: str
    n: int = 1
    size: str | None = None
    seed: int | None = None


@dataclass(frozen=True, slots=True)
class DimensionSet:
    width: int | None = None
    height: int | None = None
    aspect_ratio: str | None = None

    @property
    def has_size(self) -> bool:
        return self.width is not None and self.height is not None


def _parse_leading_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        return int(match.group(1)) if match else None
    return None


def clamp_image_count(value: Any) -> int:
    # Missing, zero or unparseable counts mean one image.
    parsed = _parse_leading_int(value) or MIN_IMAGES
    return max(MIN_IMAGES, min(MAX_IMAGES, parsed))


def parse_size(size: Any) -> tuple[int, int] | None:
    if not isinstance(size, str):
        return None
    parts = size.lower().split("x")
    if len(parts) != 2:
        return None
    width = _parse_leading_int(parts[0])
    height = _parse_leading_int(parts[1])
    if width is None or height is None or width <= 0 or height <= 0:
        return None
    return width, height


def aspect_ratio(width: int | None, height: int | None) -> str:
    if not width or not height or width <= 0 or height <= 0:
        return DEFAULT_ASPECT_RATIO
    divisor = math.gcd(width, height)
    return f"{width // divisor}:{height // divisor}"


def resolve_dimensions(size: Any) -> DimensionSet:
    parsed = parse_size(size)
    if parsed is None:
        return DimensionSet()
    width, height = parsed
    return DimensionSet(
        width=width,
        height=height,
        aspect_ratio=aspect_ratio(width, height),
    )


def parse_generation_request(payload: Any, *, default_model: str) -> GenerationRequest:
    if not isinstance(payload, dict):
        raise ValidationError("Missing or invalid JSON request body.")

    prompt = payload.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValidationError("A 'prompt' is required.")

    model = payload.get("model")
    if model is not None and not isinstance(model, str):
        raise ValidationError("'model' must be a string.")
    if not model or not model.strip():
        model = default_model

    seed = payload.get("seed")
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
        raise ValidationError("'seed' must be an integer.")

    size = payload.get("size")
    return GenerationRequest(
        prompt=prompt,
        model=model.strip(),
        n=clamp_image_count(payload.get("n")),
        size=size if isinstance(size, str) else None,
        seed=seed,
    )


def build_submission_payload(
    request: GenerationRequest,
    capability: ModelCapability,
) -> dict[str, Any]:
    dimensions = resolve_dimensions(request.size)
    payload: dict[str, Any] = {
        "prompt": request.prompt,
        "num_images": request.n,
        "seed": request.seed,
        "enable_safety_checker": False,
    }
    if dimensions.has_size:
        if capability.uses_size_object:
            payload["image_size"] = {
                "width": dimensions.width,
                "height": dimensions.height,
            }
        elif capability.supports_discrete_size:
            payload["width"] = dimensions.width
            payload["height"] = dimensions.height
    if dimensions.aspect_ratio and capability.supports_aspect_ratio:
        payload["aspect_ratio"] = dimensions.aspect_ratio
    return payload
