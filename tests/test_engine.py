from __future__ import annotations

from pathlib import Path

import pytest

from mock_engine.config import EngineConfig
from mock_engine.engine import MockEngine
from mock_engine.errors import MissingRecordingError
from mock_engine.models import MockRequest, MockResponse
from mock_engine.recording import RecordMode

PETSTORE = {
    "openapi": "3.0.0",
    "paths": {
        "/pets/{petId}": {
            "get": {
                "responses": {
                    "200": {
                        "content": {
                            "application/json": {
                                "schema": {
                                    "type": "object",
                                    "properties": {
                                        "id": {"type": "integer", "minimum": 1, "maximum": 10},
                                        "name": {"type": "string"},
                                        "status": {"type": "string", "enum": ["available", "sold"]},
                                    },
                                }
                            }
                        }
                    },
                    "404": {
                        "content": {
                            "application/json": {
                                "schema": {"type": "object", "properties": {"message": {"type": "string"}}}
                            }
                        }
                    },
                }
            }
        }
    },
}


@pytest.mark.asyncio
async def test_engines_are_isolated(clock) -> None:
    first = MockEngine(EngineConfig(default_delay_ms=0), clock=clock)
    second = MockEngine(EngineConfig(default_delay_ms=0), clock=clock)
    first.mock("GET", "/only-first", {"status": 200})
    await first.activate_scenario("server_error")

    response = await second.handle(MockRequest(method="GET", url="/only-first"))

    assert response.status == 404
    assert second.scenarios.active == "default"


@pytest.mark.asyncio
async def test_generated_schema_mocks_follow_scenarios(clock) -> None:
    engine = MockEngine(
        EngineConfig(default_delay_ms=0, seed=5, schema=PETSTORE, global_headers={"X-Mock": "yes"}),
        clock=clock,
    )
    engine.generate_from_schema()

    await engine.activate_scenario("success")
    ok = await engine.handle(MockRequest(method="GET", url="/pets/3"))

    assert ok.status == 200
    assert 1 <= ok.data["id"] <= 10
    assert ok.data["status"] in ("available", "sold")
    assert ok.headers["X-Mock"] == "yes"
    # the error mock is tagged "error" and is not eligible under "success"
    assert {definition.scenario for definition in engine.registry.definitions()} == {"success", "error"}


@pytest.mark.asyncio
async def test_strict_engine_validates_generated_responses(clock) -> None:
    engine = MockEngine(
        EngineConfig(default_delay_ms=0, seed=5, schema=PETSTORE, strict_validation=True, fail_on_invalid_response=True),
        clock=clock,
    )
    engine.generate_from_schema()
    await engine.activate_scenario("success")

    response = await engine.handle(MockRequest(method="GET", url="/pets/3"))

    assert response.status == 200


@pytest.mark.asyncio
async def test_recording_the_resolver_and_replaying_it(tmp_path: Path, clock) -> None:
    config = EngineConfig(default_delay_ms=0, recordings_dir=tmp_path)
    recording_engine = MockEngine(config, clock=clock)
    recording_engine.mock("GET", "/users/:id", lambda request: {"data": {"id": request.params["id"]}})
    recording_engine.use_cassette("users", RecordMode.RECORD)
    recorded = await recording_engine.handle(MockRequest(method="GET", url="/users/7"))
    recording_engine.eject_cassette()

    replaying_engine = MockEngine(config, clock=clock)
    replaying_engine.use_cassette("users")
    replayed = await replaying_engine.handle(MockRequest(method="GET", url="/users/7"))

    assert recorded.data == replayed.data == {"id": "7"}
    assert replayed.recorded is True
    with pytest.raises(MissingRecordingError):
        await replaying_engine.handle(MockRequest(method="GET", url="/users/8"))


@pytest.mark.asyncio
async def test_allow_missing_falls_through_to_the_transport(tmp_path: Path, clock) -> None:
    calls: list[str] = []

    async def transport(request: MockRequest) -> MockResponse:
        calls.append(request.url)
        return MockResponse(status=204)

    engine = MockEngine(EngineConfig(default_delay_ms=0, recordings_dir=tmp_path), clock=clock, transport=transport)
    engine.use_cassette("empty", allow_missing=True)

    response = await engine.handle(MockRequest(method="DELETE", url="/users/1"))

    assert response.status == 204
    assert calls == ["/users/1"]


@pytest.mark.asyncio
async def test_eject_without_save_does_not_write(tmp_path: Path, clock) -> None:
    engine = MockEngine(EngineConfig(default_delay_ms=0, recordings_dir=tmp_path), clock=clock)
    engine.mock("GET", "/x", {"status": 200})
    engine.use_cassette("draft", RecordMode.UPDATE)
    await engine.handle(MockRequest(method="GET", url="/x"))

    engine.eject_cassette(save=False)

    assert not (tmp_path / "draft.json").exists()
    assert (await engine.handle(MockRequest(method="GET", url="/missing"))).status == 404


@pytest.mark.asyncio
async def test_probe_endpoint_runs_each_scenario(engine: MockEngine) -> None:
    engine.mock("GET", "/orders", {"data": []})

    results = await engine.probe_endpoint("GET", "/orders", ["success", "auth_error", "server_error"])

    assert [(name, response.status) for name, response in results] == [
        ("success", 200),
        ("auth_error", 401),
        ("server_error", 500),
    ]


@pytest.mark.asyncio
async def test_reset_returns_engine_to_initial_state(engine: MockEngine) -> None:
    engine.mock("GET", "/x", {"status": 200})
    await engine.bootstrap()
    engine.use_cassette("session", RecordMode.RECORD)
    await engine.handle(MockRequest(method="GET", url="/x"))

    await engine.reset()

    assert len(engine.registry) == 0
    assert engine.scenarios.active == "default"
    assert engine.flows.list_flows() == []
    assert engine.resolver.request_history() == []
    assert engine.recorder.mode == RecordMode.PLAYBACK
    assert engine.recorder.get_stats()["recorded"] == 0
    assert (await engine.handle(MockRequest(method="GET", url="/x"))).status == 404
