"""Schema-driven synthetic response generation."""

from __future__ import annotations

import math
import random
from typing import Any, Iterable, Protocol

import structlog
from faker import Faker

from .models import MockRequest, MockResponse
from .registry import MockDefinition, RouteRegistry

LOGGER = structlog.get_logger("mock_engine", component="generator")

HTTP_METHODS = ("get", "post", "put", "patch", "delete")
DEFAULT_SPAN = 1000


def _bounds(constraints: dict[str, Any]) -> tuple[float, float]:
    """Resolve numeric bounds, deriving a missing side from the one that is present."""

    minimum = constraints.get("minimum")
    maximum = constraints.get("maximum")
    if minimum is None and maximum is None:
        return 0, DEFAULT_SPAN
    if minimum is None:
        return maximum - DEFAULT_SPAN, maximum
    if maximum is None:
        return minimum, minimum + DEFAULT_SPAN
    return minimum, maximum


class DataGenerator(Protocol):
    def generate_primitive(self, type_name: str, format_name: str | None, constraints: dict[str, Any]) -> Any:
        """Return a synthetic value for a primitive schema type."""


class FakerDataGenerator:
    """``DataGenerator`` backed by a private, optionally seeded Faker instance."""

    def __init__(self, seed: int | None = None, locale: str = "en_US") -> None:
        self.faker = Faker(locale)
        if seed is not None:
            self.faker.seed_instance(seed)

    def generate_primitive(self, type_name: str, format_name: str | None, constraints: dict[str, Any]) -> Any:
        if type_name == "string":
            return self._string(format_name)
        if type_name == "integer":
            low, high = _bounds(constraints)
            return self.faker.random_int(min=math.ceil(low), max=math.floor(high))
        if type_name == "number":
            low, high = _bounds(constraints)
            return min(max(round(self.faker.random.uniform(low, high), 2), low), high)
        if type_name == "boolean":
            return self.faker.pybool()
        return self._mixed()

    def _string(self, format_name: str | None) -> str:
        if format_name == "email":
            return self.faker.email()
        if format_name == "uri":
            return self.faker.url()
        if format_name == "date":
            return self.faker.past_date().isoformat()
        if format_name == "date-time":
            return self.faker.past_datetime().isoformat()
        if format_name == "uuid":
            return self.faker.uuid4()
        if format_name == "password":
            return self.faker.password()
        return " ".join(self.faker.words(3))

    def _mixed(self) -> Any:
        choice = self.faker.random_element(["string", "number", "boolean", "array", "object"])
        if choice == "string":
            return " ".join(self.faker.words())
        if choice == "number":
            return self.faker.random_int()
        if choice == "boolean":
            return self.faker.pybool()
        if choice == "array":
            return self.faker.words(3)
        return {self.faker.word(): self.faker.word()}


class SchemaResponseGenerator:
    """Produces synthetic values from JSON-schema-like descriptors.

    Recursion is bounded by ``max_depth`` so self-referential schemas terminate:
    past the limit objects collapse to ``{}``, arrays to ``[]`` and scalars to ``None``.
    """

    def __init__(
        self,
        data_generator: DataGenerator,
        *,
        max_depth: int = 8,
        rng: random.Random | None = None,
    ) -> None:
        self._data = data_generator
        self._max_depth = max_depth
        self._rng = rng or random.Random()

    def generate(self, schema: dict[str, Any] | None, _depth: int = 0) -> Any:
        if not schema:
            return None

        if "example" in schema:
            return schema["example"]
        examples = schema.get("examples")
        if isinstance(examples, list) and examples:
            return self._rng.choice(examples)
        if isinstance(schema.get("enum"), list) and schema["enum"]:
            return self._rng.choice(schema["enum"])

        type_name = schema.get("type")
        if _depth >= self._max_depth:
            LOGGER.debug("schema_depth_limit", depth=_depth, type=type_name)
            if type_name == "object":
                return {}
            if type_name == "array":
                return []
            return None

        if type_name in ("number", "integer"):
            return self._number(schema)
        if type_name == "array":
            length = self._data.generate_primitive("integer", None, {"minimum": 1, "maximum": 5})
            return [self.generate(schema.get("items"), _depth + 1) for _ in range(int(length))]
        if type_name == "object":
            properties = schema.get("properties") or {}
            return {key: self.generate(child, _depth + 1) for key, child in properties.items()}
        if type_name in ("string", "boolean"):
            return self._data.generate_primitive(type_name, schema.get("format"), schema)
        return self._data.generate_primitive("mixed", None, schema)

    def _number(self, schema: dict[str, Any]) -> int | float:
        value = self._data.generate_primitive(schema["type"], schema.get("format"), schema)
        multiple_of = schema.get("multipleOf")
        if multiple_of:
            value = math.floor(value / multiple_of) * multiple_of
            minimum = schema.get("minimum")
            if minimum is not None and value < minimum:
                value += multiple_of
        if schema["type"] == "integer":
            return math.floor(value)
        return value

    def response_producer(
        self,
        status: int,
        response_spec: dict[str, Any],
        *,
        global_headers: dict[str, str] | None = None,
        delay_ms: int | None = None,
    ):
        """Build a producer that generates a fresh body/headers on every call."""

        content = response_spec.get("content") or {}
        header_spec = response_spec.get("headers") or {}

        def produce(request: MockRequest) -> MockResponse:
            headers = dict(global_headers or {})
            for name, spec in header_spec.items():
                headers[name] = str(self.generate((spec or {}).get("schema")))
            data = None
            if content:
                content_type = next(iter(content))
                media_type = content[content_type] or {}
                if media_type.get("schema"):
                    data = self.generate(media_type["schema"])
                headers["Content-Type"] = content_type
            return MockResponse(status=status, headers=headers, data=data, delay=delay_ms)

        return produce


def register_openapi_mocks(
    registry: RouteRegistry,
    generator: SchemaResponseGenerator,
    paths: dict[str, Any],
    *,
    scenarios: Iterable[str] = ("success", "error"),
    global_headers: dict[str, str] | None = None,
    delay_ms: int | None = None,
) -> list[MockDefinition]:
    """Register one generated mock per documented response of an OpenAPI ``paths`` object.

    2xx responses are tagged ``success``; everything else is tagged ``error``.
    """

    wanted = set(scenarios)
    registered: list[MockDefinition] = []
    for path_template, path_item in (paths or {}).items():
        if not isinstance(path_item, dict):
            continue
        for method, operation in path_item.items():
            if method.lower() not in HTTP_METHODS or not isinstance(operation, dict):
                continue
            for status, response_spec in (operation.get("responses") or {}).items():
                status_text = str(status)
                if not status_text.isdigit():
                    continue
                scenario = "success" if status_text.startswith("2") else "error"
                if scenario not in wanted:
                    continue
                producer = generator.response_producer(
                    int(status_text),
                    response_spec or {},
                    global_headers=global_headers,
                    delay_ms=delay_ms,
                )
                registered.append(registry.register(method, path_template, producer, scenario=scenario))
    LOGGER.info("schema_mocks_generated", count=len(registered), paths=len(paths or {}))
    return registered
