"""Built-in scenario catalog."""

from __future__ import annotations

from typing import Any

from .models import MockRequest, MockResponse
from .scenarios import Scenario, ScenarioManager

JSON_HEADERS = {"Content-Type": "application/json"}


def _json(status: int, data: Any, **extra: Any) -> dict[str, Any]:
    return {"status": status, "headers": dict(JSON_HEADERS), "data": data, **extra}


def register_builtin_scenarios(manager: ScenarioManager) -> None:
    manager.register_scenario(
        "success",
        title="Success Flow",
        description="All requests succeed with expected responses",
        setup=lambda mgr, scenario: mgr.set_response_delay(50),
    )
    manager.register_scenario(
        "slow_success",
        title="Slow Success Flow",
        description="Successful responses with realistic delays",
        setup=lambda mgr, scenario: mgr.set_response_delay(500),
    )
    manager.register_scenario(
        "server_error",
        title="Server Error Flow",
        description="Server returns 5xx errors",
        responses={"*": _json(500, {"error": "Internal Server Error", "message": "Something went wrong"})},
    )
    manager.register_scenario(
        "network_error",
        title="Network Error Flow",
        description="Network connectivity issues; responses stall like a timeout",
        responses={"*": {"status": 0, "error": "Network Error", "data": None, "delay": 30000}},
    )
    manager.register_scenario(
        "auth_error",
        title="Authentication Error Flow",
        description="Authentication and authorization failures",
        responses={"*": _json(401, {"error": "Unauthorized", "message": "Authentication required"})},
    )
    manager.register_scenario(
        "validation_error",
        title="Validation Error Flow",
        description="Request validation failures",
        responses={
            "POST *": _json(
                400,
                {
                    "error": "Validation Error",
                    "message": "Invalid request data",
                    "details": [
                        {"field": "email", "message": "Invalid email format"},
                        {"field": "password", "message": "Password too short"},
                    ],
                },
            ),
            "PUT *": _json(422, {"error": "Validation Error", "message": "Unprocessable entity"}),
            "PATCH *": _json(422, {"error": "Validation Error", "message": "Unprocessable entity"}),
        },
    )
    manager.register_scenario(
        "rate_limit",
        title="Rate Limit Flow",
        description="Rate limiting responses",
        responses={
            "*": {
                "status": 429,
                "headers": {**JSON_HEADERS, "Retry-After": "60"},
                "data": {"error": "Rate Limit Exceeded", "message": "Too many requests"},
            }
        },
    )
    manager.register_scenario(
        "intermittent_failure",
        title="Intermittent Failure Flow",
        description="Random failures to test retry logic",
        setup=lambda mgr, scenario: mgr.add_random_failures(0.3),
    )
    manager.register_scenario(
        "empty_responses",
        title="Empty Response Flow",
        description="Empty or null responses",
        responses={"GET *": _json(200, None), "POST *": _json(201, {})},
    )
    manager.register_scenario(
        "large_payload",
        title="Large Payload Flow",
        description="Large response payloads for performance testing",
        setup=lambda mgr, scenario: mgr.enable_large_payloads(),
    )
    manager.register_scenario(
        "user_journey",
        title="User Journey Flow",
        description="Complete user registration and login flow",
        state={"users": {}, "sessions": {}},
        setup=setup_user_journey,
    )


def setup_user_journey(manager: ScenarioManager, scenario: Scenario) -> None:
    """Register/login/profile endpoints backed by in-memory users and sessions."""

    users: dict[str, dict[str, Any]] = scenario.state.setdefault("users", {})
    sessions: dict[str, dict[str, Any]] = scenario.state.setdefault("sessions", {})
    factories = manager.factories

    def register(request: MockRequest) -> MockResponse:
        payload = request.data or {}
        email = payload.get("email")
        if not email:
            return MockResponse(status=400, headers=dict(JSON_HEADERS), data={"error": "Email is required"})
        if email in users:
            return MockResponse(status=409, headers=dict(JSON_HEADERS), data={"error": "User already exists"})
        user = factories.build("user", {"email": email, "username": payload.get("username") or email.split("@")[0]})
        users[email] = {"user": user, "password": payload.get("password")}
        token = factories.faker.uuid4()
        sessions[token] = user
        return MockResponse(status=201, headers=dict(JSON_HEADERS), data={"user": user, "token": token})

    def login(request: MockRequest) -> MockResponse:
        payload = request.data or {}
        account = users.get(payload.get("email"))
        if account is None:
            return MockResponse(status=401, headers=dict(JSON_HEADERS), data={"error": "User not found"})
        if account["password"] is not None and payload.get("password") != account["password"]:
            return MockResponse(status=401, headers=dict(JSON_HEADERS), data={"error": "Invalid credentials"})
        token = factories.faker.uuid4()
        sessions[token] = account["user"]
        return MockResponse(status=200, headers=dict(JSON_HEADERS), data={"user": account["user"], "token": token})

    def profile(request: MockRequest) -> MockResponse:
        token = (request.header("authorization") or "").replace("Bearer ", "", 1)
        user = sessions.get(token)
        if user is None:
            return MockResponse(status=401, headers=dict(JSON_HEADERS), data={"error": "Unauthorized"})
        return MockResponse(status=200, headers=dict(JSON_HEADERS), data=user)

    manager.mock("POST", "/api/auth/register", register)
    manager.mock("POST", "/api/auth/login", login)
    manager.mock("GET", "/api/profile", profile)
