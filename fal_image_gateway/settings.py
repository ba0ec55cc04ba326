from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    custom_access_key: str = ""
    ai_keys: str = ""
    supported_models: str = ""
    supported_models_path: str | None = None
    default_model: str = "flux-dev"
    host: str = "0.0.0.0"
    port: int = 8000
    debug_mode: bool = False
    fal_schema_url: str = "https://fal.ai/api/openapi/queue/openapi.json"
    fal_queue_base_url: str = "https://queue.fal.run"
    capability_ttl_seconds: float = 24 * 60 * 60
    poll_interval_seconds: float = 2.0
    poll_max_attempts: int = 45
    http_timeout_seconds: float = 30.0
    http_connect_timeout_seconds: float = 5.0

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def ai_keys_list(self) -> list[str]:
        return _split_csv(self.ai_keys)

    @property
    def supported_models_list(self) -> list[str]:
        return _split_csv(self.supported_models)


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
