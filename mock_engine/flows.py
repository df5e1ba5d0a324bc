"""Multi-step flow execution with shared, templated context."""

from __future__ import annotations

import asyncio
import re
import traceback
from typing import Any, Awaitable, Callable

import structlog

from .clock import Clock, SystemClock
from .errors import ConfigurationError, StepTimeoutError
from .models import (
    ExpectedResponse,
    FlowDefinition,
    FlowMock,
    FlowOptions,
    FlowResult,
    FlowStep,
    MockRequest,
    MockResponse,
    StepResult,
    utcnow,
)
from .registry import RouteRegistry, static_producer
from .resolver import maybe_await
from .validation import Validator, check_shape

LOGGER = structlog.get_logger("mock_engine", component="flows")

Dispatch = Callable[[MockRequest], Awaitable[MockResponse]]

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")
_MISSING = object()


def lookup(context: dict[str, Any], dotted: str) -> Any:
    """Resolve ``a.b.0.c`` against nested mappings/lists; ``_MISSING`` when absent."""

    current: Any = context
    for part in dotted.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def interpolate(template: Any, context: dict[str, Any]) -> Any:
    """Substitute ``{{key}}`` placeholders through strings, lists and mappings.

    Unresolved placeholders are left untouched. A string consisting of a single
    placeholder takes the raw context value, so non-string values survive.
    """

    if isinstance(template, str):
        whole = _PLACEHOLDER.fullmatch(template.strip())
        if whole:
            value = lookup(context, whole.group(1))
            return template if value is _MISSING else value

        def substitute(match: re.Match[str]) -> str:
            value = lookup(context, match.group(1))
            return match.group(0) if value is _MISSING else str(value)

        return _PLACEHOLDER.sub(substitute, template)
    if isinstance(template, list):
        return [interpolate(item, context) for item in template]
    if isinstance(template, dict):
        return {key: interpolate(value, context) for key, value in template.items()}
    return template


def validate_expected(response: MockResponse, expected: ExpectedResponse) -> list[str]:
    errors: list[str] = []
    if expected.status is not None and response.status != expected.status:
        errors.append(f"Expected status {expected.status}, got {response.status}")
    for header, value in expected.headers.items():
        actual = response.header(header)
        if actual != value:
            errors.append(f"Expected header {header}: {value}, got {actual}")
    if expected.data is not None:
        errors.extend(check_shape(response.data, expected.data))
    return errors


def flow_owner(name: str) -> str:
    return f"flow:{name}"


class FlowOrchestrator:
    """Runs registered flows step by step through a dispatch function.

    After each successful step the response body is stored in the context as
    ``step<index>Response`` and under the step name. When
    ``reset_between_steps`` is set only the flow's own mocks are cleared and
    re-materialized between steps.
    """

    def __init__(
        self,
        dispatch: Dispatch,
        registry: RouteRegistry,
        *,
        validator: Validator | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._dispatch = dispatch
        self.registry = registry
        self.validator = validator
        self.clock = clock or SystemClock()
        self._flows: dict[str, FlowDefinition] = {}
        self.current_flow: str | None = None

    def register_flow(
        self,
        name: str,
        steps: list[FlowStep | dict[str, Any]],
        *,
        options: FlowOptions | dict[str, Any] | None = None,
        mocks: list[FlowMock | dict[str, Any]] | None = None,
    ) -> FlowDefinition:
        flow = FlowDefinition(
            name=name,
            steps=[step if isinstance(step, FlowStep) else FlowStep.model_validate(step) for step in steps],
            options=options if isinstance(options, FlowOptions) else FlowOptions.model_validate(options or {}),
            mocks=[mock if isinstance(mock, FlowMock) else FlowMock.model_validate(mock) for mock in mocks or []],
        )
        self._flows[name] = flow
        return flow

    def get(self, name: str) -> FlowDefinition:
        flow = self._flows.get(name)
        if flow is None:
            raise ConfigurationError(f"Flow '{name}' not found", details={"flow": name})
        return flow

    def list_flows(self) -> list[dict[str, Any]]:
        return [
            {"name": name, "step_count": len(flow.steps), "options": flow.options.model_dump()}
            for name, flow in self._flows.items()
        ]

    def clear(self) -> None:
        self._flows.clear()

    async def execute_flow(self, name: str, context: dict[str, Any] | None = None) -> FlowResult:
        flow = self.get(name)
        context = dict(context or {})
        owner = flow_owner(name)
        result = FlowResult(flow=name)
        logger = LOGGER.bind(flow=name)
        logger.info("flow_started", steps=len(flow.steps))

        self.current_flow = name
        started = self.clock.now()
        self._materialize(flow)
        try:
            for index, step in enumerate(flow.steps):
                step_result = await self._execute_step(flow, step, index, context)
                result.steps.append(step_result)
                if not step_result.success:
                    result.success = False
                    result.errors.append(step_result.error or f"Step '{step.name}' failed")
                    logger.warning("flow_step_failed", step=step.name, index=index, error=step_result.error)
                    if not flow.options.continue_on_failure:
                        break
                if flow.options.reset_between_steps and index < len(flow.steps) - 1:
                    self.registry.remove_owned(owner)
                    self._materialize(flow)
        finally:
            self.registry.remove_owned(owner)
            self.current_flow = None

        result.duration_ms = round((self.clock.now() - started) * 1000, 3)
        result.finished_at = utcnow()
        result.context = context
        logger.info("flow_finished", success=result.success, duration_ms=result.duration_ms)
        return result

    def _materialize(self, flow: FlowDefinition) -> None:
        owner = flow_owner(flow.name)
        for mock in flow.mocks:
            response = mock.response if callable(mock.response) else static_producer(mock.response)
            self.registry.register(mock.method, mock.path, response, priority=mock.priority, owner=owner)

    async def _execute_step(
        self,
        flow: FlowDefinition,
        step: FlowStep,
        index: int,
        context: dict[str, Any],
    ) -> StepResult:
        step_result = StepResult(step=step.name, index=index)
        started = self.clock.now()
        try:
            headers = interpolate(step.request.headers, context)
            request = MockRequest(
                method=step.method,
                url=str(interpolate(step.path, context)),
                headers={str(key): str(value) for key, value in headers.items()},
                data=interpolate(step.request.data, context),
            )
            step_result.request = request

            response = await self._dispatch_within_timeout(flow, step, request)
            step_result.response = response

            errors: list[str] = []
            if step.expected_response is not None:
                errors.extend(validate_expected(response, step.expected_response))
            if step.response_schema and self.validator is not None:
                errors.extend(
                    self.validator.validate_response(response, step.response_schema, request=request).errors
                )
            step_result.validation_errors = errors

            if errors:
                step_result.error = f"Response validation failed: {', '.join(errors)}"
            elif step.validator is not None:
                outcome = await maybe_await(step.validator(response, request, context))
                if outcome is not True:
                    step_result.error = f"Custom validation failed: {outcome}"

            if step_result.error is None:
                if response.data is not None:
                    context[f"step{index}Response"] = response.data
                    if step.name:
                        context[step.name] = response.data
                step_result.success = True
        except StepTimeoutError as exc:
            step_result.error = exc.message
        except Exception as exc:  # noqa: BLE001 - step failures are reported, not raised
            step_result.error = str(exc) or exc.__class__.__name__
            step_result.traceback = traceback.format_exc()

        step_result.duration_ms = round((self.clock.now() - started) * 1000, 3)
        return step_result

    async def _dispatch_within_timeout(self, flow: FlowDefinition, step: FlowStep, request: MockRequest) -> MockResponse:
        timeout_ms = flow.options.timeout_ms
        if not timeout_ms:
            return await self._dispatch(request)
        try:
            return await asyncio.wait_for(self._dispatch(request), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise StepTimeoutError(flow.name, step.name, timeout_ms) from exc
