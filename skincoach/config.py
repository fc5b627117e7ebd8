from __future__ import annotations

import os
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict


VisionProvider = Literal["openai", "demo"]

# First non-empty wins: Heroku dyno metadata, then CI, then generic names.
COMMIT_SHA_ENV_KEYS = ("HEROKU_SLUG_COMMIT", "SOURCE_VERSION", "GITHUB_SHA", "COMMIT_SHA", "GIT_SHA")


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    vision_provider: VisionProvider = "openai"
    vision_timeout_s: float = 30.0
    vision_max_tokens: int = 400
    vision_temperature: float = 0.3

    catalog_path: Optional[str] = None
    catalog_url: Optional[str] = None
    catalog_timeout_s: float = 10.0

    redis_url: Optional[str] = None
    consultation_ttl_days: float = 30.0

    log_level: str = "INFO"
    port: int = 8080
    commit_sha: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        provider = _env_str(env, "VISION_PROVIDER", "openai").lower()
        if provider not in {"openai", "demo"}:
            provider = "openai"
        return cls(
            openai_api_key=_env_str(env, "OPENAI_API_KEY") or None,
            openai_base_url=_env_str(env, "OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
            vision_provider=provider,
            vision_timeout_s=_env_float(env, "VISION_TIMEOUT_S", 30.0),
            vision_max_tokens=int(_env_float(env, "VISION_MAX_TOKENS", 400)),
            vision_temperature=_env_float(env, "VISION_TEMPERATURE", 0.3),
            catalog_path=_env_str(env, "CATALOG_PATH") or None,
            catalog_url=_env_str(env, "CATALOG_URL").rstrip("/") or None,
            catalog_timeout_s=_env_float(env, "CATALOG_TIMEOUT_S", 10.0),
            redis_url=_env_str(env, "REDIS_URL") or None,
            consultation_ttl_days=_env_float(env, "CONSULTATION_TTL_DAYS", 30.0),
            log_level=_env_str(env, "LOG_LEVEL", "INFO").upper(),
            port=int(_env_float(env, "PORT", 8080)),
            commit_sha=next((sha for sha in (_env_str(env, key) for key in COMMIT_SHA_ENV_KEYS) if sha), None),
        )


def _env_str(env: Mapping[str, str], name: str, default: str = "") -> str:
    return (env.get(name) or default).strip()


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default
