"""Pydantic models for requests, responses, cassettes and flows."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SCENARIO = "default"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MockRequest(BaseModel):
    """Request descriptor handled by the engine (url absolute or relative to the base URL)."""

    method: str
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    data: Any = None
    params: dict[str, str] = Field(default_factory=dict)

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()

    def header(self, name: str, default: str | None = None) -> str | None:
        """Case-insensitive header lookup."""

        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    @classmethod
    def coerce(cls, value: "MockRequest | dict[str, Any]") -> "MockRequest":
        if isinstance(value, cls):
            return value
        return cls.model_validate(value)


class MockResponse(BaseModel):
    """Response descriptor produced by a mock, an interceptor or a cassette."""

    model_config = ConfigDict(populate_by_name=True)

    status: int = 200
    status_text: Optional[str] = Field(default=None, alias="statusText")
    headers: dict[str, str] = Field(default_factory=dict)
    data: Any = None
    delay: Optional[int] = None
    error: Optional[str] = None
    duration: Optional[float] = None
    recorded: bool = Field(default=False, alias="_recorded")
    recording_id: Optional[str] = Field(default=None, alias="_recordingId")
    recorded_at: Optional[str] = Field(default=None, alias="_recordedAt")

    def header(self, name: str, default: str | None = None) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    @classmethod
    def coerce(cls, value: "MockResponse | dict[str, Any]") -> "MockResponse":
        if isinstance(value, cls):
            return value
        return cls.model_validate(value)


class RequestHistoryEntry(BaseModel):
    """Observability record appended for every handled request."""

    request: MockRequest
    timestamp: datetime = Field(default_factory=utcnow)
    scenario: str = DEFAULT_SCENARIO


class ScenarioActivation(BaseModel):
    scenario: str
    previous_scenario: str
    activated_at: datetime = Field(default_factory=utcnow)


# --- Cassettes ---


class RecordedRequest(BaseModel):
    method: str
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    data: Any = None


class RecordedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: int
    status_text: Optional[str] = Field(default=None, alias="statusText")
    headers: dict[str, str] = Field(default_factory=dict)
    data: Any = None
    duration: float = 0


class Recording(BaseModel):
    """One sanitized request/response pair stored in a cassette."""

    id: str
    request: RecordedRequest
    response: RecordedResponse
    timestamp: int
    duration: float = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


class CassetteMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    total_requests: int = Field(default=0, alias="totalRequests")
    unique_endpoints: int = Field(default=0, alias="uniqueEndpoints")


class Cassette(BaseModel):
    """Named, persisted collection of recordings (one ``<name>.json`` file)."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    version: str = "1.0.0"
    created_at: str = Field(default_factory=lambda: utcnow().isoformat(), alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    recordings: list[Recording] = Field(default_factory=list)
    metadata: CassetteMetadata = Field(default_factory=CassetteMetadata)

    def as_serializable(self) -> dict[str, Any]:
        """Return the JSON payload written to disk."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RecordingHistoryEntry(BaseModel):
    action: str
    key: str
    timestamp: datetime = Field(default_factory=utcnow)


# --- Flows ---


class StepRequest(BaseModel):
    """Request template of a flow step; strings may contain ``{{key}}`` placeholders."""

    headers: dict[str, Any] = Field(default_factory=dict)
    data: Any = None


class ExpectedResponse(BaseModel):
    """Expected status/headers and structural shape of a step response."""

    status: Optional[int] = None
    headers: dict[str, str] = Field(default_factory=dict)
    data: Any = None


class FlowStep(BaseModel):
    """Single request inside a flow."""

    name: str
    method: str = "GET"
    path: str
    request: StepRequest = Field(default_factory=StepRequest)
    expected_response: Optional[ExpectedResponse] = None
    response_schema: Optional[dict[str, Any]] = None
    validator: Optional[Callable[..., Any]] = Field(default=None, exclude=True)


class FlowOptions(BaseModel):
    reset_between_steps: bool = False
    continue_on_failure: bool = False
    timeout_ms: Optional[float] = 30000


class FlowMock(BaseModel):
    """Mock owned by a flow; re-materialized before each step when steps are isolated."""

    method: str
    path: str
    response: Any = Field(default_factory=dict)
    priority: int = 0


class FlowDefinition(BaseModel):
    name: str
    steps: list[FlowStep] = Field(default_factory=list)
    options: FlowOptions = Field(default_factory=FlowOptions)
    mocks: list[FlowMock] = Field(default_factory=list)


class StepResult(BaseModel):
    """Runtime result for one flow step."""

    step: str
    index: int
    success: bool = False
    request: Optional[MockRequest] = None
    response: Optional[MockResponse] = None
    duration_ms: float = 0
    error: Optional[str] = None
    traceback: Optional[str] = None
    validation_errors: list[str] = Field(default_factory=list)


class FlowResult(BaseModel):
    """Aggregated flow execution summary."""

    flow: str
    success: bool = True
    steps: list[StepResult] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    duration_ms: float = 0
    context: dict[str, Any] = Field(default_factory=dict)
