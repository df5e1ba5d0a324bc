"""Bundle loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError
from .models import FlowMock, FlowOptions, FlowStep


class BundleMock(BaseModel):
    """Static mock registered globally, or under ``scenario`` when given."""

    method: str = "GET"
    path: str
    response: dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    scenario: Optional[str] = None


class BundleFlow(BaseModel):
    name: str
    steps: list[FlowStep] = Field(default_factory=list)
    options: FlowOptions = Field(default_factory=FlowOptions)
    mocks: list[FlowMock] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


class Bundle(BaseModel):
    """Editable bundle of mocks and flows run by ``mock-engine run-flow``."""

    scenario: Optional[str] = None
    mocks: list[BundleMock] = Field(default_factory=list)
    flows: list[BundleFlow] = Field(default_factory=list)

    def flow(self, name: str) -> BundleFlow:
        for flow in self.flows:
            if flow.name == name:
                return flow
        raise ConfigurationError(f"Flow '{name}' not found in bundle", details={"flow": name})


def load_bundle(path: Path) -> Bundle:
    """Load and validate a bundle YAML file."""

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Bundle file {path} could not be parsed: {exc}", details={"path": str(path)}) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Bundle file {path} must contain a mapping", details={"path": str(path)})
    try:
        return Bundle.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Bundle file {path} is invalid: {exc}", details={"path": str(path)}) from exc


def apply_bundle(engine: Any, bundle: Bundle) -> None:
    """Register the bundle's mocks and flows on a ``MockEngine``."""

    for mock in bundle.mocks:
        engine.registry.register(
            mock.method,
            mock.path,
            mock.response,
            priority=mock.priority,
            scenario=mock.scenario,
        )
    for flow in bundle.flows:
        engine.flows.register_flow(flow.name, flow.steps, options=flow.options, mocks=flow.mocks)
