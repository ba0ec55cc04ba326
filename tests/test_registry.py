from __future__ import annotations

from pathlib import Path

import pytest

from fal_image_gateway.registry import (
    ModelRegistryError,
    SupportedModelRegistry,
    load_model_registry,
    parse_model_pairs,
)
from fal_image_gateway.settings import Settings


def test_parse_model_pairs_splits_on_first_colon_only() -> None:
    assert parse_model_pairs(
        ["flux-dev:fal-ai/flux/dev", "custom:owner/app:v2", "broken", ":x", "y:"]
    ) == {"flux-dev": "fal-ai/flux/dev", "custom": "owner/app:v2"}


def test_registry_from_settings_csv() -> None:
    settings = Settings(
        supported_models=" flux-dev : fal-ai/flux/dev , sdxl:fal-ai/fast-sdxl "
    )
    registry = load_model_registry(pairs=settings.supported_models_list)
    assert registry.model_names() == ["flux-dev", "sdxl"]
    assert registry.endpoint_for("sdxl") == "fal-ai/fast-sdxl"
    assert registry.endpoint_for("missing") is None


def test_registry_is_read_only() -> None:
    registry = SupportedModelRegistry({"flux-dev": "fal-ai/flux/dev"})
    with pytest.raises(TypeError):
        registry._entries["other"] = "x"  # type: ignore[index]


def test_empty_registry_is_rejected() -> None:
    with pytest.raises(ModelRegistryError):
        load_model_registry(pairs=["nonsense"])


def test_registry_from_yaml_file(tmp_path: Path) -> None:
    path = tmp_path / "models.yaml"
    path.write_text(
        "models:\n"
        "  flux-dev: fal-ai/flux/dev\n"
        "  flux-pro: fal-ai/flux-pro/v1.1\n"
        "  empty: ''\n",
        encoding="utf-8",
    )
    registry = load_model_registry(pairs=["ignored:fal-ai/ignored"], path=str(path))
    assert dict(registry) == {
        "flux-dev": "fal-ai/flux/dev",
        "flux-pro": "fal-ai/flux-pro/v1.1",
    }


def test_registry_yaml_must_be_a_mapping(tmp_path: Path) -> None:
    path = tmp_path / "models.yaml"
    path.write_text("- flux-dev\n", encoding="utf-8")
    with pytest.raises(ModelRegistryError):
        SupportedModelRegistry.from_yaml(path)


def test_registry_yaml_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        SupportedModelRegistry.from_yaml(tmp_path / "absent.yaml")
