from __future__ import annotations

from mock_engine.models import MockRequest, MockResponse
from mock_engine.validation import JsonSchemaValidator, check_shape

DOCUMENT = {
    "openapi": "3.0.0",
    "paths": {
        "/orders/{id}": {
            "get": {
                "parameters": [{"name": "X-Tenant", "in": "header", "required": True}],
                "responses": {
                    "default": {
                        "content": {"application/json": {"schema": {"type": "object", "required": ["error"]}}}
                    }
                },
            }
        }
    },
}


def test_required_headers_and_unknown_operations() -> None:
    validator = JsonSchemaValidator()

    missing = validator.validate_request(MockRequest(method="GET", url="/orders/1"), DOCUMENT)
    present = validator.validate_request(MockRequest(method="GET", url="/orders/1", headers={"x-tenant": "a"}), DOCUMENT)
    unknown = validator.validate_request(MockRequest(method="DELETE", url="/orders/1"), DOCUMENT)

    assert missing.errors == ["Missing required header: X-Tenant"]
    assert present.valid
    assert not unknown.valid


def test_default_response_schema_is_used_for_undocumented_statuses() -> None:
    validator = JsonSchemaValidator()
    request = MockRequest(method="GET", url="/orders/1")

    result = validator.validate_response(MockResponse(status=500, data={}), DOCUMENT, request=request)

    assert result.errors == ["'error' is a required property"]


def test_check_shape_accepts_matching_structures() -> None:
    expected = {"user": {"id": "", "tags": ["x"]}, "count": 0, "active": True}
    actual = {"user": {"id": "u1", "tags": ["a", "b"], "extra": 1}, "count": 3, "active": False}

    assert check_shape(actual, expected) == []
    assert check_shape(None, {"id": ""}) == ["$: Expected type object, got null"]
