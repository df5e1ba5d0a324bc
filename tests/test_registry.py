from __future__ import annotations

import re

from mock_engine.models import MockRequest
from mock_engine.registry import RouteRegistry, compile_path


def _request(method: str, url: str, **extra) -> MockRequest:
    return MockRequest(method=method, url=url, **extra)


def test_higher_priority_wins_regardless_of_registration_order() -> None:
    for order in ((1, 5), (5, 1)):
        registry = RouteRegistry()
        for priority in order:
            registry.register("GET", "/items", {"data": {"priority": priority}}, priority=priority)

        match = registry.resolve("GET", "/items", _request("GET", "/items"), "default")

        assert match is not None
        assert match.definition.priority == 5


def test_equal_priority_ties_break_by_registration_order() -> None:
    registry = RouteRegistry()
    first = registry.register("GET", "/items", {"data": "first"})
    registry.register("GET", "/items", {"data": "second"})

    for _ in range(3):
        match = registry.resolve("GET", "/items", _request("GET", "/items"), "default")
        assert match.definition is first


def test_colon_and_brace_params_are_captured() -> None:
    registry = RouteRegistry()
    registry.register("GET", "/users/:id/orders/{order_id}", {"status": 200})

    match = registry.resolve("GET", "/users/42/orders/7", _request("GET", "/users/42/orders/7"), "default")

    assert match.params == {"id": "42", "order_id": "7"}
    assert registry.resolve("GET", "/users/42/orders/7/extra", _request("GET", "/x"), "default") is None


def test_wildcard_and_regex_patterns_match() -> None:
    registry = RouteRegistry()
    registry.register("GET", "/files/*", {"data": "file"})
    registry.register("GET", re.compile(r"^/v\d+/health$"), {"data": "health"})

    assert registry.resolve("GET", "/files/a/b.txt", _request("GET", "/files/a/b.txt"), "default")
    assert registry.resolve("GET", "/v2/health", _request("GET", "/v2/health"), "default")
    assert registry.resolve("POST", "/v2/health", _request("POST", "/v2/health"), "default") is None


def test_literal_paths_do_not_compile() -> None:
    assert compile_path("/plain/path") is None
    assert compile_path("/v1.0/:id").match("/v1.0/7")
    assert not compile_path("/v1.0/:id").match("/v1x0/7")


def test_conditions_filter_candidates_and_see_params() -> None:
    registry = RouteRegistry()
    registry.register(
        "GET",
        "/users/:id",
        {"data": "admin"},
        priority=10,
        conditions=[lambda request: request.params.get("id") == "1"],
    )
    fallback = registry.register("GET", "/users/:id", {"data": "regular"})

    assert registry.resolve("GET", "/users/1", _request("GET", "/users/1"), "default").definition.priority == 10
    assert registry.resolve("GET", "/users/2", _request("GET", "/users/2"), "default").definition is fallback


def test_scenario_tagged_mocks_outrank_global_ones() -> None:
    registry = RouteRegistry()
    registry.register("GET", "/users/:id", {"status": 200}, priority=100)
    tagged = registry.register("GET", "*", {"status": 500}, scenario="server_error")

    request = _request("GET", "/users/1")
    assert registry.resolve("GET", "/users/1", request, "default").definition.priority == 100
    assert registry.resolve("GET", "/users/1", request, "server_error").definition is tagged
    # mocks tagged with another scenario are never eligible
    assert registry.resolve("GET", "/other", _request("GET", "/other"), "auth_error") is None


def test_remove_owned_only_drops_owned_definitions() -> None:
    registry = RouteRegistry()
    registry.register("GET", "/global", {"status": 200})
    registry.register("GET", "/owned", {"status": 200}, owner="scenario:x")
    registry.register("GET", "/owned/:id", {"status": 200}, owner="scenario:x")

    assert registry.remove_owned("scenario:x") == 2
    assert len(registry) == 1
    assert [definition.path for definition in registry.definitions()] == ["/global"]


def test_unregister_and_clear() -> None:
    registry = RouteRegistry()
    definition = registry.register("GET", "/a", {"status": 200})
    registry.register("GET", "/b/:id", {"status": 200})

    assert registry.unregister(definition) is True
    assert registry.unregister(definition) is False
    registry.clear()
    assert len(registry) == 0


def test_static_responses_are_copied_per_call() -> None:
    registry = RouteRegistry()
    definition = registry.register("GET", "/list", {"data": {"items": [1, 2]}})

    first = definition.producer(_request("GET", "/list"))
    first.data["items"].append(3)
    second = definition.producer(_request("GET", "/list"))

    assert second.data == {"items": [1, 2]}
