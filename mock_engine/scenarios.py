"""Scenario management: named, mutually exclusive response sets."""

from __future__ import annotations

import random
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog

from .errors import ConfigurationError
from .factories import MockFactories
from .models import DEFAULT_SCENARIO, MockRequest, MockResponse, ScenarioActivation
from .registry import MockDefinition, RouteRegistry
from .resolver import Interceptor, ResponseResolver, maybe_await

LOGGER = structlog.get_logger("mock_engine", component="scenarios")

CATCH_ALL_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

ScenarioHook = Callable[["ScenarioManager", "Scenario"], Any]


@dataclass
class Scenario:
    name: str
    title: str
    description: str = ""
    responses: dict[str, Any] = field(default_factory=dict)
    setup: Optional[ScenarioHook] = None
    teardown: Optional[ScenarioHook] = None
    state: dict[str, Any] = field(default_factory=dict)

    @property
    def owner(self) -> str:
        return scenario_owner(self.name)


def scenario_owner(name: str) -> str:
    return f"scenario:{name}"


def parse_response_key(key: str) -> list[tuple[str, str]]:
    """Expand a ``responses`` key (``*``, ``METHOD path`` or bare GET path) into routes."""

    if key == "*":
        return [(method, "*") for method in CATCH_ALL_METHODS]
    if " " in key:
        method, path = key.split(" ", 1)
        return [(method.upper(), path.strip())]
    return [("GET", key)]


class ScenarioManager:
    """Owns scenarios and switches between them.

    Activation is a transition: tear down the current scenario, mark the new
    one active, run its setup, then materialize its static responses. Mocks and
    interceptors created on behalf of a scenario are owned by it and removed on
    deactivation; global mocks are never touched. Steps are not atomic and
    there is no rollback if a hook fails.
    """

    def __init__(
        self,
        registry: RouteRegistry,
        resolver: ResponseResolver,
        *,
        factories: MockFactories,
        rng: random.Random | None = None,
        large_payload_size: int = 1000,
        history_limit: int = 1000,
    ) -> None:
        self.registry = registry
        self.resolver = resolver
        self.factories = factories
        self.rng = rng or random.Random()
        self.large_payload_size = large_payload_size
        self._scenarios: dict[str, Scenario] = {}
        self._history: deque[ScenarioActivation] = deque(maxlen=history_limit)

    @property
    def active(self) -> str:
        return self.resolver.active_scenario

    def register_scenario(
        self,
        name: str,
        *,
        title: str | None = None,
        description: str = "",
        responses: dict[str, Any] | None = None,
        setup: ScenarioHook | None = None,
        teardown: ScenarioHook | None = None,
        state: dict[str, Any] | None = None,
    ) -> Scenario:
        scenario = Scenario(
            name=name,
            title=title or name,
            description=description,
            responses=dict(responses or {}),
            setup=setup,
            teardown=teardown,
            state=state if state is not None else {},
        )
        self._scenarios[name] = scenario
        return scenario

    def get(self, name: str) -> Scenario:
        scenario = self._scenarios.get(name)
        if scenario is None:
            raise ConfigurationError(
                f"Scenario '{name}' not found (active scenario {self.active})",
                details={"scenario": name, "active_scenario": self.active},
            )
        return scenario

    async def activate_scenario(self, name: str) -> Scenario:
        scenario = self.get(name)
        previous = self.active
        if previous != DEFAULT_SCENARIO:
            await self.deactivate_scenario()

        self._history.append(ScenarioActivation(scenario=name, previous_scenario=previous))
        self.resolver.active_scenario = name
        if scenario.setup is not None:
            await maybe_await(scenario.setup(self, scenario))
        self._materialize(scenario)
        LOGGER.info("scenario_activated", scenario=name, previous=previous)
        return scenario

    async def deactivate_scenario(self) -> None:
        name = self.active
        scenario = self._scenarios.get(name)
        if scenario is not None and scenario.teardown is not None:
            await maybe_await(scenario.teardown(self, scenario))

        owner = scenario_owner(name)
        removed_mocks = self.registry.remove_owned(owner)
        removed_interceptors = self.resolver.remove_interceptors(owner)
        self.resolver.restore_response_delay()
        self.resolver.active_scenario = DEFAULT_SCENARIO
        if name != DEFAULT_SCENARIO:
            LOGGER.info(
                "scenario_deactivated",
                scenario=name,
                removed_mocks=removed_mocks,
                removed_interceptors=removed_interceptors,
            )

    def _materialize(self, scenario: Scenario) -> None:
        for key, response in scenario.responses.items():
            for method, path in parse_response_key(key):
                self.registry.register(method, path, response, scenario=scenario.name, owner=scenario.owner)

    # Helpers for setup hooks: everything they create is owned by the active scenario.

    def mock(self, method: str, path: str, response: Any, **options: Any) -> MockDefinition:
        return self.registry.register(
            method,
            path,
            response,
            scenario=self.active,
            owner=scenario_owner(self.active),
            **options,
        )

    def add_interceptor(self, interceptor: Interceptor) -> None:
        self.resolver.add_interceptor(interceptor, owner=scenario_owner(self.active))

    def set_response_delay(self, delay_ms: int) -> None:
        self.resolver.set_response_delay(delay_ms)

    def add_random_failures(self, failure_rate: float) -> None:
        rng = self.rng

        def random_failure(request: MockRequest) -> MockResponse | None:
            if rng.random() < failure_rate:
                return MockResponse(
                    status=500,
                    headers={"Content-Type": "application/json"},
                    data={"error": "Random Failure", "message": "Simulated random failure for testing"},
                    delay=0,
                )
            return None

        self.add_interceptor(random_failure)

    def enable_large_payloads(self) -> None:
        size = self.large_payload_size

        def large_payload(request: MockRequest) -> MockResponse | None:
            if request.method.upper() != "GET":
                return None
            return MockResponse(
                status=200,
                headers={"Content-Type": "application/json"},
                data={
                    "items": self.factories.build_list("product", size),
                    "metadata": {"total": size},
                },
                delay=self.resolver.default_delay_ms,
            )

        self.add_interceptor(large_payload)

    def list_scenarios(self) -> list[dict[str, str]]:
        return [
            {"name": name, "title": scenario.title, "description": scenario.description}
            for name, scenario in self._scenarios.items()
        ]

    def scenario_history(self) -> list[ScenarioActivation]:
        return list(self._history)

    async def reset(self) -> None:
        await self.deactivate_scenario()
        self._history.clear()
