from __future__ import annotations

import asyncio

import pytest

from mock_engine.errors import ResponseValidationError
from mock_engine.models import MockRequest, MockResponse
from mock_engine.registry import RouteRegistry
from mock_engine.resolver import ResponseResolver
from mock_engine.validation import JsonSchemaValidator

USER_SCHEMA = {
    "openapi": "3.0.0",
    "paths": {
        "/users": {
            "post": {
                "requestBody": {
                    "required": True,
                    "content": {
                        "application/json": {
                            "schema": {
                                "type": "object",
                                "required": ["email"],
                                "properties": {"email": {"type": "string"}},
                            }
                        }
                    },
                },
                "responses": {
                    "201": {
                        "content": {
                            "application/json": {
                                "schema": {
                                    "type": "object",
                                    "required": ["id"],
                                    "properties": {"id": {"type": "string"}},
                                }
                            }
                        }
                    }
                },
            }
        }
    },
}


def _resolver(clock, **kwargs) -> tuple[RouteRegistry, ResponseResolver]:
    registry = RouteRegistry()
    kwargs.setdefault("default_delay_ms", 0)
    return registry, ResponseResolver(registry, clock=clock, **kwargs)


@pytest.mark.asyncio
async def test_unmatched_request_yields_404_naming_the_request(clock) -> None:
    _, resolver = _resolver(clock)

    response = await resolver.handle({"method": "get", "url": "/missing"})

    assert response.status == 404
    assert response.data["message"] == "Mock not found for GET /missing"
    assert len(resolver.request_history()) == 1


@pytest.mark.asyncio
async def test_absolute_urls_are_resolved_against_the_path(clock) -> None:
    registry, resolver = _resolver(clock)
    registry.register("GET", "/users/:id", lambda request: {"data": {"id": request.params["id"]}})

    response = await resolver.handle(MockRequest(method="GET", url="http://localhost:3000/users/42?expand=1"))

    assert response.status == 200
    assert response.data == {"id": "42"}


@pytest.mark.asyncio
async def test_async_producers_are_awaited(clock) -> None:
    registry, resolver = _resolver(clock)

    async def producer(request: MockRequest) -> MockResponse:
        return MockResponse(status=202, data={"queued": True})

    registry.register("POST", "/jobs", producer)

    response = await resolver.handle(MockRequest(method="POST", url="/jobs"))

    assert response.status == 202


@pytest.mark.asyncio
async def test_positive_delay_waits_on_the_clock(clock) -> None:
    registry, resolver = _resolver(clock, default_delay_ms=100)
    registry.register("GET", "/slow", {"data": "x", "delay": 250})
    registry.register("GET", "/default", {"data": "x"})
    registry.register("GET", "/instant", {"data": "x", "delay": 0})

    await resolver.handle(MockRequest(method="GET", url="/slow"))
    await resolver.handle(MockRequest(method="GET", url="/default"))
    await resolver.handle(MockRequest(method="GET", url="/instant"))

    assert clock.sleeps == [0.25, 0.1]


@pytest.mark.asyncio
async def test_cors_preflight_and_forced_rate_limit_interceptors(clock) -> None:
    registry, resolver = _resolver(clock)
    registry.register("GET", "/items", {"status": 200})

    preflight = await resolver.handle(MockRequest(method="OPTIONS", url="/items"))
    limited = await resolver.handle(MockRequest(method="GET", url="/items", headers={"X-Test-Rate-Limit": "1"}))

    assert preflight.status == 200
    assert preflight.headers["Access-Control-Allow-Origin"] == "*"
    assert limited.status == 429
    assert limited.headers["Retry-After"] == "60"


@pytest.mark.asyncio
async def test_interceptors_run_in_order_and_first_result_wins(clock) -> None:
    registry, resolver = _resolver(clock)
    registry.register("GET", "/items", {"status": 200})
    calls: list[str] = []

    def passthrough(request: MockRequest) -> None:
        calls.append("passthrough")
        return None

    async def teapot(request: MockRequest) -> dict:
        calls.append("teapot")
        return {"status": 418}

    def never(request: MockRequest) -> dict:
        calls.append("never")
        return {"status": 500}

    resolver.add_interceptor(passthrough, owner="test")
    resolver.add_interceptor(teapot, owner="test")
    resolver.add_interceptor(never, owner="test")

    response = await resolver.handle(MockRequest(method="GET", url="/items"))

    assert response.status == 418
    assert calls == ["passthrough", "teapot"]
    assert resolver.remove_interceptors("test") == 3
    assert (await resolver.handle(MockRequest(method="GET", url="/items"))).status == 200


@pytest.mark.asyncio
async def test_history_filters_by_method_path_and_scenario(clock) -> None:
    _, resolver = _resolver(clock)
    await resolver.handle(MockRequest(method="GET", url="/a"))
    resolver.active_scenario = "success"
    await resolver.handle(MockRequest(method="POST", url="/b"))

    assert [entry.request.url for entry in resolver.request_history(method="post")] == ["/b"]
    assert [entry.request.url for entry in resolver.request_history(path="/a")] == ["/a"]
    assert [entry.scenario for entry in resolver.request_history(scenario="success")] == ["success"]

    resolver.clear_history()
    assert resolver.request_history() == []


@pytest.mark.asyncio
async def test_history_is_bounded(clock) -> None:
    _, resolver = _resolver(clock, history_limit=3)
    for index in range(5):
        await resolver.handle(MockRequest(method="GET", url=f"/{index}"))

    assert [entry.request.url for entry in resolver.request_history()] == ["/2", "/3", "/4"]


@pytest.mark.asyncio
async def test_strict_mode_rejects_invalid_requests_with_400(clock) -> None:
    registry, resolver = _resolver(
        clock,
        validator=JsonSchemaValidator(),
        schema=USER_SCHEMA,
        strict_validation=True,
    )
    registry.register("POST", "/users", {"status": 201, "data": {"id": "u1"}})

    rejected = await resolver.handle(MockRequest(method="POST", url="/users", data={"name": "no email"}))
    accepted = await resolver.handle(MockRequest(method="POST", url="/users", data={"email": "a@example.com"}))

    assert rejected.status == 400
    assert rejected.data["details"]
    assert accepted.status == 201


@pytest.mark.asyncio
async def test_strict_mode_logs_invalid_responses_without_raising(clock) -> None:
    registry, resolver = _resolver(
        clock,
        validator=JsonSchemaValidator(),
        schema=USER_SCHEMA,
        strict_validation=True,
    )
    registry.register("POST", "/users", {"status": 201, "data": {"id": 7}})

    response = await resolver.handle(MockRequest(method="POST", url="/users", data={"email": "a@example.com"}))

    assert response.status == 201


@pytest.mark.asyncio
async def test_strict_mode_can_hard_fail_on_invalid_responses(clock) -> None:
    registry, resolver = _resolver(
        clock,
        validator=JsonSchemaValidator(),
        schema=USER_SCHEMA,
        strict_validation=True,
        fail_on_invalid_response=True,
    )
    registry.register("POST", "/users", {"status": 201, "data": {"id": 7}})

    with pytest.raises(ResponseValidationError) as excinfo:
        await resolver.handle(MockRequest(method="POST", url="/users", data={"email": "a@example.com"}))

    assert excinfo.value.details["method"] == "POST"
    assert excinfo.value.details["scenario"] == "default"


@pytest.mark.asyncio
async def test_delay_is_cancellable() -> None:
    registry = RouteRegistry()
    resolver = ResponseResolver(registry, default_delay_ms=0)
    registry.register("GET", "/hang", {"delay": 60_000})

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(resolver.handle(MockRequest(method="GET", url="/hang")), timeout=0.01)


@pytest.mark.asyncio
async def test_reset_restores_builtin_interceptors_and_delay(clock) -> None:
    registry, resolver = _resolver(clock)
    resolver.add_interceptor(lambda request: {"status": 503}, owner="scenario:x")
    resolver.set_response_delay(500)
    resolver.active_scenario = "x"

    resolver.reset()

    assert resolver.active_scenario == "default"
    assert resolver.default_delay_ms == 0
    assert (await resolver.handle(MockRequest(method="OPTIONS", url="/any"))).status == 200
    assert (await resolver.handle(MockRequest(method="GET", url="/any"))).status == 404
