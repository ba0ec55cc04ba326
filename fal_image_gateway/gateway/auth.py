from __future__ import annotations

import logging
import random
import secrets
from dataclasses import dataclass

from fal_image_gateway.errors import AuthenticationError
from fal_image_gateway.settings import Settings

logger = logging.getLogger("uvicorn.error")

_SCHEMES = ("bearer", "key")


class AuthConfigurationError(RuntimeError):
    """Raised when the caller secret or the upstream key pool is missing."""


@dataclass(frozen=True, slots=True)
class AuthContext:
    caller_authorized: bool
    upstream_credential: str


def extract_caller_key(auth_header: str | None) -> str:
    header = (auth_header or "").strip()
    scheme, _, token = header.partition(" ")
    if scheme.lower() in _SCHEMES:
        return token.strip()
    return header


class CredentialSelector:
    def __init__(
        self,
        *,
        access_key: str,
        upstream_keys: list[str],
        rng: random.Random | None = None,
    ) -> None:
        if not access_key:
            raise AuthConfigurationError(
                "CUSTOM_ACCESS_KEY is not set; refusing to serve unauthenticated traffic.",
            )
        if not upstream_keys:
            raise AuthConfigurationError("AI_KEYS contains no valid keys.")
        self._access_key = access_key
        self._upstream_keys = tuple(upstream_keys)
        self._rng = rng or random.SystemRandom()

    @classmethod
    def from_settings(cls, settings: Settings) -> CredentialSelector:
        return cls(
            access_key=settings.custom_access_key.strip(),
            upstream_keys=settings.ai_keys_list,
        )

    @property
    def pool_size(self) -> int:
        return len(self._upstream_keys)

    def authorize(self, auth_header: str | None) -> AuthContext:
        caller_key = extract_caller_key(auth_header)
        if not caller_key:
            raise AuthenticationError("Authorization header missing or empty.")
        if not secrets.compare_digest(
            caller_key.encode("utf-8"), self._access_key.encode("utf-8")
        ):
            logger.info("authentication_failed reason=invalid_key")
            raise AuthenticationError("Invalid API key.")
        return AuthContext(
            caller_authorized=True,
            upstream_credential=self._rng.choice(self._upstream_keys),
        )
