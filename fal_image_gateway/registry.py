from __future__ import annotations

from collections.abc import Iterator, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml
from pydantic import BaseModel, field_validator


class ModelRegistryError(ValueError):
    """Raised at startup when no usable model mapping is configured."""


class ModelRegistryDocument(BaseModel):
    models: dict[str, str]

    @field_validator("models", mode="before")
    @classmethod
    def _strip_entries(cls, value: Any) -> dict[str, str]:
        if not isinstance(value, dict):
            raise ValueError("'models' must be a mapping of model name to endpoint id.")
        cleaned: dict[str, str] = {}
        for raw_name, raw_endpoint in value.items():
            name = str(raw_name).strip()
            endpoint = str(raw_endpoint or "").strip()
            if name and endpoint:
                cleaned[name] = endpoint
        return cleaned


class SupportedModelRegistry(Mapping[str, str]):
    """Caller-facing model name to fal endpoint id, fixed for the process."""

    def __init__(self, entries: Mapping[str, str]) -> None:
        if not entries:
            raise ModelRegistryError(
                "No supported models configured. Set SUPPORTED_MODELS "
                "(e.g. 'flux-dev:fal-ai/flux/dev') or SUPPORTED_MODELS_PATH.",
            )
        self._entries = MappingProxyType(dict(entries))

    def __getitem__(self, model_name: str) -> str:
        return self._entries[model_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def endpoint_for(self, model_name: str) -> str | None:
        return self._entries.get(model_name)

    def model_names(self) -> list[str]:
        return list(self._entries)

    @classmethod
    def from_pairs(cls, pairs: list[str]) -> SupportedModelRegistry:
        return cls(parse_model_pairs(pairs))

    @classmethod
    def from_yaml(cls, path: str | Path) -> SupportedModelRegistry:
        resolved = Path(path)
        if not resolved.exists():
            raise FileNotFoundError(
                f"Model registry not found at '{resolved}'. "
                "Create it or unset SUPPORTED_MODELS_PATH.",
            )
        with resolved.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        if not isinstance(raw, dict):
            raise ModelRegistryError(f"Expected YAML object in '{resolved}'.")
        document = ModelRegistryDocument.model_validate(raw)
        return cls(document.models)


def parse_model_pairs(pairs: list[str]) -> dict[str, str]:
    # Endpoint ids may contain ':' themselves; only the first one separates.
    entries: dict[str, str] = {}
    for pair in pairs:
        name, sep, endpoint = pair.partition(":")
        if not sep:
            continue
        name = name.strip()
        endpoint = endpoint.strip()
        if name and endpoint:
            entries[name] = endpoint
    return entries


def load_model_registry(
    *,
    pairs: list[str],
    path: str | None = None,
) -> SupportedModelRegistry:
    if path:
        return SupportedModelRegistry.from_yaml(path)
    return SupportedModelRegistry.from_pairs(pairs)
