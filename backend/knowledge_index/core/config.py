"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "KIDX_"
DEFAULT_CONFIG_PATH = Path("~/.config/knowledge-index/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "root"): "storage_root",
    ("redis", "url"): "redis_url",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "cache_size"): "embedding_cache_size",
    ("indexing", "max_keywords"): "max_keywords",
    ("indexing", "max_segment_tokens"): "max_segment_tokens",
    ("indexing", "vector_batch_size"): "vector_batch_size",
    ("indexing", "vector_concurrency"): "vector_concurrency",
    ("locks", "ttl_seconds"): "lock_ttl_seconds",
    ("locks", "wait_seconds"): "lock_wait_seconds",
    ("retrieval", "top_k"): "default_top_k",
    ("retrieval", "score_threshold"): "default_score_threshold",
    ("retrieval", "strategy"): "default_strategy",
    ("logging", "level"): "log_level",
    ("logging", "json"): "log_json",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".knowledge-index" / "kidx.db")
    storage_root: Path = Field(default=Path.home() / ".knowledge-index" / "files")
    redis_url: str | None = None
    embedding_model: str = "hashed-384"
    embedding_dim: int = Field(default=384, gt=0)
    embedding_cache_size: int = Field(default=10_000, ge=0)
    max_keywords: int = Field(default=10, gt=0)
    max_segment_tokens: int = Field(default=1000, gt=0)
    vector_batch_size: int = Field(default=10, gt=0)
    vector_concurrency: int = Field(default=10, gt=0)
    lock_ttl_seconds: int = Field(default=600, gt=0)
    lock_wait_seconds: float = Field(default=5.0, ge=0)
    default_top_k: int = Field(default=4, gt=0)
    default_score_threshold: float = 0.0
    default_strategy: Literal["semantic", "full_text", "hybrid"] = "semantic"
    log_level: str = "INFO"
    log_json: bool = True

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "storage_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("path settings must be a path or string")

    @field_validator("redis_url", mode="before")
    @classmethod
    def _blank_redis_url(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with KIDX_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
