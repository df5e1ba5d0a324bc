"""Exception hierarchy for the mock engine."""

from __future__ import annotations

from typing import Any


class MockEngineError(Exception):
    """Base exception for all mock engine failures.

    Attributes:
        message: Human-readable error message.
        details: Structured context (method, url, scenario, fingerprint, ...).
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for logging/reports."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(MockEngineError):
    """Raised for programmer errors: unknown scenario/flow/factory names, bad modes or config files."""


class MissingRecordingError(MockEngineError):
    """Raised when playback finds no recording for a request."""

    def __init__(self, method: str, url: str, fingerprint: str, *, cassette: str | None = None) -> None:
        super().__init__(
            f"No recording found for {method} {url} (fingerprint {fingerprint}, cassette {cassette})",
            details={"method": method, "url": url, "fingerprint": fingerprint, "cassette": cassette},
        )
        self.method = method
        self.url = url
        self.fingerprint = fingerprint


class CassetteIOError(MockEngineError):
    """Raised when a cassette cannot be read, parsed or written."""

    def __init__(self, name: str, path: str, reason: str) -> None:
        super().__init__(
            f"Cassette {name} at {path}: {reason}",
            details={"cassette": name, "path": path},
        )
        self.name = name
        self.path = path


class ResponseValidationError(MockEngineError):
    """Raised in strict mode when configured to hard-fail on an invalid mock response."""


class StepTimeoutError(MockEngineError):
    """Raised when a flow step exceeds the flow timeout."""

    def __init__(self, flow: str, step: str, timeout_ms: float) -> None:
        super().__init__(
            f"Step '{step}' of flow '{flow}' timed out after {timeout_ms:.0f}ms",
            details={"flow": flow, "step": step, "timeout_ms": timeout_ms},
        )
        self.timeout_ms = timeout_ms
