"""Response resolution: interceptors, route lookup, producers, delays."""

from __future__ import annotations

import inspect
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union
from urllib.parse import urljoin, urlsplit

import structlog

from .clock import Clock, SystemClock
from .errors import ResponseValidationError
from .models import DEFAULT_SCENARIO, MockRequest, MockResponse, RequestHistoryEntry
from .registry import RouteRegistry
from .validation import Validator

LOGGER = structlog.get_logger("mock_engine", component="resolver")

InterceptorResult = Union[MockResponse, dict[str, Any], None]
Interceptor = Callable[[MockRequest], Union[InterceptorResult, Awaitable[InterceptorResult]]]

BUILTIN_OWNER = "builtin"


@dataclass
class _RegisteredInterceptor:
    func: Interceptor
    owner: Optional[str] = None


def cors_preflight(request: MockRequest) -> MockResponse | None:
    if request.method != "OPTIONS":
        return None
    return MockResponse(
        status=200,
        headers={
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET,POST,PUT,PATCH,DELETE,OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type,Authorization",
            "Access-Control-Max-Age": "86400",
        },
        data=None,
        delay=0,
    )


def forced_rate_limit(request: MockRequest) -> MockResponse | None:
    if not request.header("x-test-rate-limit"):
        return None
    return MockResponse(
        status=429,
        headers={"Content-Type": "application/json", "Retry-After": "60"},
        data={"error": "Too Many Requests", "message": "Rate limit exceeded"},
        delay=0,
    )


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ResponseResolver:
    """Turns a request descriptor into a response.

    Every request is appended to a bounded history. Interceptors run first, in
    registration order, and the first non-empty result wins; otherwise the
    registry picks a mock for the active scenario and its producer is invoked.
    A positive ``delay`` (milliseconds) is awaited on the injected clock.
    """

    def __init__(
        self,
        registry: RouteRegistry,
        *,
        base_url: str = "http://localhost:3000",
        default_delay_ms: int = 100,
        clock: Clock | None = None,
        validator: Validator | None = None,
        schema: dict[str, Any] | None = None,
        strict_validation: bool = False,
        fail_on_invalid_response: bool = False,
        history_limit: int = 1000,
    ) -> None:
        self.registry = registry
        self.base_url = base_url
        self.default_delay_ms = default_delay_ms
        self._initial_delay_ms = default_delay_ms
        self.clock = clock or SystemClock()
        self.validator = validator
        self.schema = schema or {}
        self.strict_validation = strict_validation
        self.fail_on_invalid_response = fail_on_invalid_response
        self.active_scenario = DEFAULT_SCENARIO
        self._history: deque[RequestHistoryEntry] = deque(maxlen=history_limit)
        self._interceptors: list[_RegisteredInterceptor] = []
        self._install_builtin_interceptors()

    def add_interceptor(self, interceptor: Interceptor, *, owner: str | None = None) -> None:
        self._interceptors.append(_RegisteredInterceptor(interceptor, owner))

    def remove_interceptors(self, owner: str) -> int:
        kept = [entry for entry in self._interceptors if entry.owner != owner]
        removed = len(self._interceptors) - len(kept)
        self._interceptors = kept
        return removed

    def set_response_delay(self, delay_ms: int) -> None:
        self.default_delay_ms = delay_ms

    def restore_response_delay(self) -> None:
        self.default_delay_ms = self._initial_delay_ms

    def path_of(self, url: str) -> str:
        return urlsplit(urljoin(self.base_url, url)).path or "/"

    async def handle(self, request: MockRequest | dict[str, Any]) -> MockResponse:
        request = MockRequest.coerce(request)
        self._history.append(RequestHistoryEntry(request=request, scenario=self.active_scenario))
        logger = LOGGER.bind(method=request.method, url=request.url, scenario=self.active_scenario)

        response = await self._intercept(request)
        if response is None:
            response = await self._resolve(request, logger)

        delay_ms = self.default_delay_ms if response.delay is None else response.delay
        if delay_ms > 0:
            await self.clock.sleep(delay_ms / 1000)
        return response

    async def _intercept(self, request: MockRequest) -> MockResponse | None:
        for entry in list(self._interceptors):
            result = await maybe_await(entry.func(request))
            if result:
                return MockResponse.coerce(result)
        return None

    async def _resolve(self, request: MockRequest, logger: Any) -> MockResponse:
        path = self.path_of(request.url)
        match = self.registry.resolve(request.method, path, request, self.active_scenario)
        if match is None:
            logger.warning("request_unmatched", path=path)
            return self._not_found(request)

        definition = match.definition
        request = request.model_copy(update={"params": match.params})
        strict = self.strict_validation and self.validator is not None

        if strict and definition.validate:
            result = self.validator.validate_request(request, self.schema)
            if not result.valid:
                logger.warning("request_validation_failed", errors=result.errors)
                return MockResponse(
                    status=400,
                    headers={"Content-Type": "application/json"},
                    data={
                        "error": "Validation Error",
                        "message": "Request validation failed",
                        "details": result.errors,
                    },
                    delay=0,
                )

        response = MockResponse.coerce(await maybe_await(definition.producer(request)))
        logger.debug("request_matched", route=definition.describe(), status=response.status)

        if strict:
            result = self.validator.validate_response(response, self.schema, request=request)
            if not result.valid:
                logger.warning("response_validation_failed", route=definition.describe(), errors=result.errors)
                if self.fail_on_invalid_response:
                    raise ResponseValidationError(
                        f"Mock response for {request.method} {request.url} failed validation "
                        f"(scenario {self.active_scenario})",
                        details={
                            "method": request.method,
                            "url": request.url,
                            "scenario": self.active_scenario,
                            "errors": result.errors,
                        },
                    )
        return response

    @staticmethod
    def _not_found(request: MockRequest) -> MockResponse:
        return MockResponse(
            status=404,
            headers={"Content-Type": "application/json"},
            data={
                "error": "Not Found",
                "message": f"Mock not found for {request.method} {request.url}",
                "path": request.url,
            },
            delay=0,
        )

    def request_history(
        self,
        *,
        method: str | None = None,
        path: str | None = None,
        scenario: str | None = None,
    ) -> list[RequestHistoryEntry]:
        history = list(self._history)
        if method:
            history = [entry for entry in history if entry.request.method == method.upper()]
        if path:
            history = [entry for entry in history if path in entry.request.url]
        if scenario:
            history = [entry for entry in history if entry.scenario == scenario]
        return history

    def clear_history(self) -> None:
        self._history.clear()

    def reset(self) -> None:
        """Drop history, scenario-owned interceptors and delay overrides."""

        self.clear_history()
        self.active_scenario = DEFAULT_SCENARIO
        self.restore_response_delay()
        self._interceptors = []
        self._install_builtin_interceptors()

    def _install_builtin_interceptors(self) -> None:
        self.add_interceptor(cors_preflight, owner=BUILTIN_OWNER)
        self.add_interceptor(forced_rate_limit, owner=BUILTIN_OWNER)
