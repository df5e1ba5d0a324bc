"""Request/response validation: the ``Validator`` collaborator and structural shape checks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlsplit

from jsonschema import Draft202012Validator

from .models import MockRequest, MockResponse
from .registry import compile_path


@dataclass
class ValidationResult:
    valid: bool = True
    errors: list[str] = field(default_factory=list)


class Validator(Protocol):
    def validate_request(self, request: MockRequest, schema: dict[str, Any]) -> ValidationResult:
        ...

    def validate_response(
        self,
        response: MockResponse,
        schema: dict[str, Any],
        *,
        request: MockRequest | None = None,
    ) -> ValidationResult:
        ...


class JsonSchemaValidator:
    """``Validator`` checking bodies against an OpenAPI document with jsonschema.

    ``schema`` may be a full OpenAPI document (operations are looked up by
    method and path) or a bare JSON schema applied to the body directly.
    """

    def validate_request(self, request: MockRequest, schema: dict[str, Any]) -> ValidationResult:
        if "paths" not in schema:
            return _check(request.data, schema)
        operation = _find_operation(schema, request.method, request.url)
        if operation is None:
            return ValidationResult(False, [f"No operation found for {request.method} {request.url}"])

        errors: list[str] = []
        for parameter in operation.get("parameters") or []:
            if parameter.get("in") == "header" and parameter.get("required"):
                if request.header(parameter["name"]) is None:
                    errors.append(f"Missing required header: {parameter['name']}")

        body_spec = operation.get("requestBody") or {}
        if request.data is not None and body_spec:
            content_type = request.header("content-type") or "application/json"
            media_type = (body_spec.get("content") or {}).get(content_type) or {}
            if media_type.get("schema"):
                errors.extend(_check(request.data, media_type["schema"]).errors)
        elif body_spec.get("required") and request.data is None:
            errors.append("Missing required request body")
        return ValidationResult(not errors, errors)

    def validate_response(
        self,
        response: MockResponse,
        schema: dict[str, Any],
        *,
        request: MockRequest | None = None,
    ) -> ValidationResult:
        if "paths" not in schema:
            return _check(response.data, schema)
        if request is None:
            return ValidationResult()
        operation = _find_operation(schema, request.method, request.url)
        if operation is None:
            return ValidationResult()

        responses = operation.get("responses") or {}
        response_spec = responses.get(str(response.status)) or responses.get(response.status) or responses.get("default")
        if response_spec is None:
            return ValidationResult(False, [f"No response schema found for status {response.status}"])
        content = response_spec.get("content") or {}
        if not content or response.data is None:
            return ValidationResult()
        media_type = content.get("application/json") or next(iter(content.values())) or {}
        if not media_type.get("schema"):
            return ValidationResult()
        return _check(response.data, media_type["schema"])


def _check(instance: Any, schema: dict[str, Any]) -> ValidationResult:
    validator = Draft202012Validator(schema)
    errors = []
    for error in sorted(validator.iter_errors(instance), key=lambda item: list(item.path)):
        location = ".".join(str(part) for part in error.path)
        errors.append(f"{location}: {error.message}" if location else error.message)
    return ValidationResult(not errors, errors)


def _find_operation(document: dict[str, Any], method: str, url: str) -> dict[str, Any] | None:
    path = urlsplit(url).path or "/"
    method = method.lower()
    for template, path_item in (document.get("paths") or {}).items():
        if not isinstance(path_item, dict) or method not in path_item:
            continue
        matcher = compile_path(template)
        if (matcher is None and template == path) or (matcher is not None and matcher.match(path)):
            return path_item[method]
    return None


def _kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def check_shape(actual: Any, expected: Any, path: str = "") -> list[str]:
    """Compare ``actual`` against an example-shaped ``expected`` value.

    Types must agree, every expected key must be present, and arrays expected
    non-empty must be non-empty. Values themselves are not compared.
    """

    label = path or "$"
    expected_kind, actual_kind = _kind(expected), _kind(actual)
    if expected_kind != actual_kind:
        return [f"{label}: Expected type {expected_kind}, got {actual_kind}"]

    if expected_kind == "array":
        if expected and not actual:
            return [f"{label}: Expected non-empty array, got empty array"]
        return []

    errors: list[str] = []
    if expected_kind == "object":
        for key, child in expected.items():
            child_path = f"{path}.{key}" if path else str(key)
            if key not in actual:
                errors.append(f"{child_path}: Missing property")
            else:
                errors.extend(check_shape(actual[key], child, child_path))
    return errors
