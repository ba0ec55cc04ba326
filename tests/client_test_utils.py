from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

from fal_image_gateway import main
from fal_image_gateway.main import app
from fal_image_gateway.settings import get_settings
from tests.fal_fixtures import FakeFal

ACCESS_KEY = "gateway-secret"
SUPPORTED_MODELS = "flux-dev:fal-ai/flux/dev,sd-discrete:fal-ai/discrete"


def set_default_test_env(monkeypatch: Any) -> None:
    monkeypatch.setenv("CUSTOM_ACCESS_KEY", ACCESS_KEY)
    monkeypatch.setenv("AI_KEYS", "fal-key-1,fal-key-2")
    monkeypatch.setenv("SUPPORTED_MODELS", SUPPORTED_MODELS)
    monkeypatch.setenv("POLL_INTERVAL_SECONDS", "0")
    monkeypatch.delenv("SUPPORTED_MODELS_PATH", raising=False)
    monkeypatch.delenv("DEFAULT_MODEL", raising=False)


def build_test_client(
    monkeypatch: Any,
    fal: FakeFal,
    *,
    raise_server_exceptions: bool = True,
    **env: Any,
) -> TestClient:
    set_default_test_env(monkeypatch)
    for key, value in env.items():
        monkeypatch.setenv(key, str(value))
    monkeypatch.setattr(main, "_build_http_client", lambda _settings: fal.client())
    get_settings.cache_clear()
    return TestClient(app, raise_server_exceptions=raise_server_exceptions)


def auth_headers(key: str = ACCESS_KEY) -> dict[str, str]:
    return {"Authorization": f"Bearer {key}"}
