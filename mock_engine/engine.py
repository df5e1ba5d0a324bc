"""``MockEngine``: one explicit instance owning every mock component."""

from __future__ import annotations

import random
from typing import Any, Iterable

import structlog

from .catalog import register_builtin_scenarios
from .clock import Clock, SystemClock
from .config import EngineConfig
from .factories import MockFactories
from .flows import FlowOrchestrator
from .generator import DataGenerator, FakerDataGenerator, SchemaResponseGenerator, register_openapi_mocks
from .models import FlowResult, MockRequest, MockResponse
from .recording import RealRequest, RecordConfig, RecordMode, RecordPlaybackEngine
from .registry import MockDefinition, RouteRegistry
from .resolver import ResponseResolver
from .scenarios import ScenarioManager
from .validation import JsonSchemaValidator, Validator

LOGGER = structlog.get_logger("mock_engine", component="engine")

USER_REGISTRATION_FLOW = [
    {
        "name": "register",
        "method": "POST",
        "path": "/api/auth/register",
        "request": {
            "headers": {"Content-Type": "application/json"},
            "data": {"email": "{{email}}", "username": "{{username}}", "password": "{{password}}"},
        },
        "expected_response": {"status": 201, "data": {"user": {}, "token": ""}},
    },
    {
        "name": "profile",
        "method": "GET",
        "path": "/api/profile",
        "request": {"headers": {"Authorization": "Bearer {{register.token}}"}},
        "expected_response": {"status": 200, "data": {"id": "", "email": "", "username": ""}},
    },
]


class MockEngine:
    """Composes registry, resolver, scenarios, flows and the recorder.

    Each engine has its own state, so tests can run independent engines side
    by side. While a cassette is in use ``handle`` goes through the recorder;
    the "real" call is the injected ``transport`` or, without one, the
    resolver itself.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        clock: Clock | None = None,
        validator: Validator | None = None,
        data_generator: DataGenerator | None = None,
        rng: random.Random | None = None,
        transport: RealRequest | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random(self.config.seed)
        self.validator = validator or JsonSchemaValidator()
        self.transport = transport

        faker_generator = FakerDataGenerator(seed=self.config.seed)
        self.data_generator = data_generator or faker_generator
        self.factories = MockFactories(faker=faker_generator.faker)

        self.registry = RouteRegistry()
        self.resolver = ResponseResolver(
            self.registry,
            base_url=self.config.base_url,
            default_delay_ms=self.config.default_delay_ms,
            clock=self.clock,
            validator=self.validator,
            schema=self.config.schema_document,
            strict_validation=self.config.strict_validation,
            fail_on_invalid_response=self.config.fail_on_invalid_response,
            history_limit=self.config.history_limit,
        )
        self.generator = SchemaResponseGenerator(
            self.data_generator,
            max_depth=self.config.max_schema_depth,
            rng=self.rng,
        )
        self.scenarios = ScenarioManager(
            self.registry,
            self.resolver,
            factories=self.factories,
            rng=self.rng,
            large_payload_size=self.config.large_payload_size,
            history_limit=self.config.history_limit,
        )
        register_builtin_scenarios(self.scenarios)
        self.flows = FlowOrchestrator(self.handle, self.registry, validator=self.validator, clock=self.clock)
        self.recorder = RecordPlaybackEngine(
            RecordConfig(
                recordings_dir=self.config.recordings_dir,
                base_url=self.config.base_url,
                overwrite_existing=self.config.overwrite_existing,
                sensitive_headers=list(self.config.sensitive_headers),
                sensitive_fields=list(self.config.sensitive_fields),
                history_limit=self.config.history_limit,
            ),
            clock=self.clock,
        )
        self._cassette_active = False
        self._allow_missing = False

    # --- registration ---

    def mock(self, method: str, path: Any, response: Any, **options: Any) -> MockDefinition:
        """Register a global mock; ``options`` are passed to ``RouteRegistry.register``."""

        return self.registry.register(method, path, response, **options)

    def generate_from_schema(
        self,
        paths: dict[str, Any] | None = None,
        *,
        scenarios: Iterable[str] = ("success", "error"),
    ) -> list[MockDefinition]:
        if paths is None:
            paths = self.config.schema_document.get("paths") or {}
        return register_openapi_mocks(
            self.registry,
            self.generator,
            paths,
            scenarios=scenarios,
            global_headers=self.config.global_headers,
        )

    # --- request handling ---

    async def handle(self, request: MockRequest | dict[str, Any]) -> MockResponse:
        if not self._cassette_active:
            return await self.resolver.handle(request)
        return await self.recorder.handle_request(
            request,
            self.transport or self.resolver.handle,
            allow_missing=self._allow_missing,
        )

    async def activate_scenario(self, name: str) -> None:
        await self.scenarios.activate_scenario(name)

    async def deactivate_scenario(self) -> None:
        await self.scenarios.deactivate_scenario()

    async def execute_flow(self, name: str, context: dict[str, Any] | None = None) -> FlowResult:
        return await self.flows.execute_flow(name, context)

    async def probe_endpoint(
        self,
        method: str,
        path: str,
        scenarios: Iterable[str] = ("success", "server_error"),
    ) -> list[tuple[str, MockResponse]]:
        """Send the same request under each scenario in turn."""

        results: list[tuple[str, MockResponse]] = []
        for name in scenarios:
            await self.scenarios.activate_scenario(name)
            response = await self.handle(
                MockRequest(method=method, url=path, headers={"Content-Type": "application/json"})
            )
            results.append((name, response))
        return results

    # --- cassettes ---

    def use_cassette(
        self,
        name: str,
        mode: RecordMode | str = RecordMode.PLAYBACK,
        *,
        allow_missing: bool = False,
    ) -> None:
        self.recorder.set_mode(mode)
        self.recorder.load_cassette(name)
        self._cassette_active = True
        self._allow_missing = allow_missing

    def eject_cassette(self, *, save: bool = True) -> None:
        if not self._cassette_active:
            return
        if save and self.recorder.mode in (RecordMode.RECORD, RecordMode.UPDATE):
            self.recorder.save_cassette()
        self._cassette_active = False
        self._allow_missing = False
        LOGGER.info("cassette_ejected", cassette=self.recorder.current_cassette, saved=save)

    # --- lifecycle ---

    async def bootstrap(self) -> "MockEngine":
        """Activate ``success`` and register the stock ``user_registration`` flow."""

        await self.scenarios.activate_scenario("success")
        self.flows.register_flow("user_registration", USER_REGISTRATION_FLOW)
        return self

    async def reset(self) -> None:
        """Return every component to its initial state."""

        self.eject_cassette(save=False)
        await self.scenarios.reset()
        self.registry.clear()
        self.resolver.reset()
        self.flows.clear()
        self.recorder.clear()
        self.recorder.set_mode(RecordMode.PLAYBACK)
        self.factories.reset_sequences()
        LOGGER.info("engine_reset")
