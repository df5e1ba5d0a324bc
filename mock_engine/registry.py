"""Route registry: mock definitions keyed by method + path, with pattern matching."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Awaitable, Callable, Pattern, Union

import structlog

from .models import DEFAULT_SCENARIO, MockRequest, MockResponse

LOGGER = structlog.get_logger("mock_engine", component="registry")

ProducerResult = Union[MockResponse, dict[str, Any]]
ResponseProducer = Callable[[MockRequest], Union[ProducerResult, Awaitable[ProducerResult]]]
Condition = Callable[[MockRequest], bool]
PathPattern = Union[str, Pattern[str]]

_PARAM_PATTERN = re.compile(r":(?P<colon>[A-Za-z_][A-Za-z0-9_]*)|\{(?P<brace>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<star>\*)")


@dataclass
class MockDefinition:
    """A registered mock: a response producer plus its selection criteria."""

    method: str
    path: PathPattern
    producer: ResponseProducer
    scenario: str = DEFAULT_SCENARIO
    priority: int = 0
    conditions: list[Condition] = field(default_factory=list)
    owner: str | None = None
    validate: bool = True
    sequence: int = 0
    matcher: Pattern[str] | None = field(default=None, repr=False)

    @property
    def is_pattern(self) -> bool:
        return self.matcher is not None

    def describe(self) -> str:
        path = self.path.pattern if isinstance(self.path, re.Pattern) else self.path
        return f"{self.method} {path}"


@dataclass
class RouteMatch:
    definition: MockDefinition
    params: dict[str, str]


def static_producer(response: ProducerResult) -> ResponseProducer:
    """Wrap a fixed response so every call returns an independent copy."""

    template = MockResponse.coerce(response)

    def produce(request: MockRequest) -> MockResponse:
        return template.model_copy(deep=True)

    return produce


def compile_path(path: PathPattern) -> Pattern[str] | None:
    """Compile ``:param``/``{param}``/``*`` templates; literal paths return ``None``."""

    if isinstance(path, re.Pattern):
        return path
    if not _PARAM_PATTERN.search(path):
        return None

    parts: list[str] = []
    position = 0
    for match in _PARAM_PATTERN.finditer(path):
        parts.append(re.escape(path[position:match.start()]))
        if match.group("star"):
            parts.append(".*")
        else:
            name = match.group("colon") or match.group("brace")
            parts.append(f"(?P<{name}>[^/]+)")
        position = match.end()
    parts.append(re.escape(path[position:]))
    return re.compile("^" + "".join(parts) + "$")


def _matches(definition: MockDefinition, path: str) -> dict[str, str] | None:
    matcher = definition.matcher
    if matcher is None:
        return None
    if isinstance(definition.path, re.Pattern):
        found = matcher.search(path)
    else:
        found = matcher.match(path)
    if not found:
        return None
    return {key: value for key, value in found.groupdict().items() if value is not None}


class RouteRegistry:
    """Stores mock definitions in exact-path buckets and a pattern list.

    Multiple definitions per route are allowed. Resolution prefers definitions
    tagged with the active scenario over global ones, then higher priority,
    then earlier registration.
    """

    def __init__(self) -> None:
        self._exact: dict[tuple[str, str], list[MockDefinition]] = {}
        self._patterns: list[MockDefinition] = []
        self._sequence = count()

    def register(
        self,
        method: str,
        path: PathPattern,
        response: ResponseProducer | ProducerResult,
        *,
        scenario: str | None = None,
        priority: int = 0,
        conditions: list[Condition] | None = None,
        owner: str | None = None,
        validate: bool = True,
    ) -> MockDefinition:
        producer = response if callable(response) else static_producer(response)
        definition = MockDefinition(
            method=method.upper(),
            path=path,
            producer=producer,
            scenario=scenario or DEFAULT_SCENARIO,
            priority=priority,
            conditions=list(conditions or []),
            owner=owner,
            validate=validate,
            sequence=next(self._sequence),
            matcher=compile_path(path),
        )
        if definition.is_pattern:
            self._patterns.append(definition)
        else:
            self._exact.setdefault((definition.method, str(path)), []).append(definition)
        LOGGER.debug(
            "mock_registered",
            route=definition.describe(),
            scenario=definition.scenario,
            priority=priority,
            owner=owner,
        )
        return definition

    def match_candidates(self, method: str, path: str, request: MockRequest) -> list[RouteMatch]:
        """Return every definition for ``method``/``path`` whose conditions all pass."""

        method = method.upper()
        matches = [RouteMatch(definition, {}) for definition in self._exact.get((method, path), [])]
        for definition in self._patterns:
            if definition.method != method:
                continue
            params = _matches(definition, path)
            if params is not None:
                matches.append(RouteMatch(definition, params))

        candidates: list[RouteMatch] = []
        for match in matches:
            scoped = request.model_copy(update={"params": match.params}) if match.params else request
            if all(condition(scoped) for condition in match.definition.conditions):
                candidates.append(match)
        return candidates

    def resolve(self, method: str, path: str, request: MockRequest, active_scenario: str) -> RouteMatch | None:
        """Select the winning candidate for the active scenario, or ``None``."""

        eligible = [
            match
            for match in self.match_candidates(method, path, request)
            if match.definition.scenario in (active_scenario, DEFAULT_SCENARIO)
        ]
        if not eligible:
            return None
        return min(eligible, key=lambda match: _rank(match.definition, active_scenario))

    def unregister(self, definition: MockDefinition) -> bool:
        if definition in self._patterns:
            self._patterns.remove(definition)
            return True
        bucket = self._exact.get((definition.method, str(definition.path)))
        if bucket and definition in bucket:
            bucket.remove(definition)
            if not bucket:
                del self._exact[(definition.method, str(definition.path))]
            return True
        return False

    def remove_owned(self, owner: str) -> int:
        """Drop every definition registered on behalf of ``owner``."""

        removed = [definition for definition in self.definitions() if definition.owner == owner]
        for definition in removed:
            self.unregister(definition)
        if removed:
            LOGGER.debug("mocks_removed", owner=owner, count=len(removed))
        return len(removed)

    def definitions(self) -> list[MockDefinition]:
        everything = [definition for bucket in self._exact.values() for definition in bucket]
        everything.extend(self._patterns)
        return sorted(everything, key=lambda definition: definition.sequence)

    def clear(self) -> None:
        self._exact.clear()
        self._patterns.clear()

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._exact.values()) + len(self._patterns)


def _rank(definition: MockDefinition, active_scenario: str) -> tuple[int, int, int]:
    tier = 0 if definition.scenario == active_scenario else 1
    return (tier, -definition.priority, definition.sequence)
