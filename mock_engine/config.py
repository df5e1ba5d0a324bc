"""Engine configuration loading."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError

ENV_PREFIX = "MOCK_ENGINE_"
_LIST_FIELDS = {"sensitive_headers", "sensitive_fields"}
_ENV_FIELDS = {
    "base_url",
    "default_delay_ms",
    "strict_validation",
    "fail_on_invalid_response",
    "history_limit",
    "seed",
    "max_schema_depth",
    "large_payload_size",
    "recordings_dir",
    "overwrite_existing",
    *_LIST_FIELDS,
}


class EngineConfig(BaseModel):
    """Settings shared by every component of a ``MockEngine``."""

    base_url: str = "http://localhost:3000"
    default_delay_ms: int = 100
    strict_validation: bool = False
    fail_on_invalid_response: bool = False
    global_headers: dict[str, str] = Field(default_factory=dict)
    schema_document: dict[str, Any] = Field(default_factory=dict, alias="schema")
    history_limit: int = Field(default=1000, gt=0)
    seed: int | None = None
    max_schema_depth: int = Field(default=8, ge=1)
    large_payload_size: int = Field(default=1000, ge=0)
    recordings_dir: Path = Path("recordings")
    sensitive_headers: list[str] = Field(default_factory=lambda: ["authorization", "cookie", "x-api-key"])
    sensitive_fields: list[str] = Field(default_factory=lambda: ["pass", "token", "secret", "key"])
    overwrite_existing: bool = False

    model_config = {"populate_by_name": True}

    @classmethod
    def from_env(cls, overrides: dict[str, Any] | None = None) -> "EngineConfig":
        """Build a config with priority: explicit override > MOCK_ENGINE_* env var > default."""

        values: dict[str, Any] = {}
        for field_name in _ENV_FIELDS:
            raw = os.environ.get(f"{ENV_PREFIX}{field_name.upper()}")
            if raw is None or raw == "":
                continue
            if field_name in _LIST_FIELDS:
                values[field_name] = [item.strip() for item in raw.split(",") if item.strip()]
            else:
                values[field_name] = raw
        values.update(overrides or {})
        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid engine configuration: {exc}") from exc


def load_config(path: Path) -> EngineConfig:
    """Load and validate an engine config YAML/JSON file."""

    if not path.exists():
        raise ConfigurationError(f"Config file {path} does not exist", details={"path": str(path)})
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Config file {path} could not be parsed: {exc}", details={"path": str(path)}) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping", details={"path": str(path)})
    try:
        return EngineConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Config file {path} is invalid: {exc}", details={"path": str(path)}) from exc
