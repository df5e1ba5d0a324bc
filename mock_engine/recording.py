"""Record/playback of request/response pairs through persisted cassettes."""

from __future__ import annotations

import copy
import hashlib
import json
import secrets
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Union
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit

import structlog
from pydantic import ValidationError

from .clock import Clock, SystemClock
from .errors import CassetteIOError, ConfigurationError, MissingRecordingError
from .models import (
    Cassette,
    MockRequest,
    MockResponse,
    RecordedRequest,
    RecordedResponse,
    Recording,
    RecordingHistoryEntry,
    utcnow,
)
from .resolver import maybe_await

LOGGER = structlog.get_logger("mock_engine", component="recorder")

REDACTED = "[REDACTED]"
NORMALIZED_TIMESTAMP = "[NORMALIZED_TIMESTAMP]"
MUTATING_METHODS = {"POST", "PUT", "PATCH"}
VOLATILE_FIELDS = ("timestamp", "createdAt", "updatedAt")

ResponseLike = Union[MockResponse, dict[str, Any]]
RequestMatcher = Callable[[RecordedRequest], str]
ResponseTransformer = Callable[[RecordedResponse, RecordedRequest], Union[RecordedResponse, dict[str, Any]]]
RealRequest = Callable[[MockRequest], Union[ResponseLike, Awaitable[ResponseLike]]]
Fallback = Callable[[MockRequest], Union[ResponseLike, None, Awaitable[Union[ResponseLike, None]]]]


class RecordMode(str, Enum):
    RECORD = "record"
    PLAYBACK = "playback"
    UPDATE = "update"


def fingerprint_request(request: RecordedRequest, base_url: str = "http://localhost:3000") -> str:
    """``METHOD:path:sortedQuery:bodyHash8``.

    The body hash (first 8 hex chars of an MD5 over canonical JSON) is only
    included for mutating methods. It identifies content; it is not a security
    primitive.
    """

    parts = urlsplit(urljoin(base_url, request.url))
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    method = request.method.upper()
    body_hash = ""
    if request.data is not None and method in MUTATING_METHODS:
        canonical = json.dumps(request.data, sort_keys=True, separators=(",", ":"), default=str)
        body_hash = hashlib.md5(canonical.encode("utf-8"), usedforsecurity=False).hexdigest()[:8]
    return f"{method}:{parts.path or '/'}:{query}:{body_hash}"


def normalize_timestamps(response: RecordedResponse, request: RecordedRequest) -> RecordedResponse:
    """Replace volatile top-level timestamp fields so cassettes diff cleanly."""

    if not isinstance(response.data, dict):
        return response
    data = dict(response.data)
    for name in VOLATILE_FIELDS:
        if data.get(name):
            data[name] = NORMALIZED_TIMESTAMP
    return response.model_copy(update={"data": data})


@dataclass
class RecordConfig:
    recordings_dir: Path = Path("recordings")
    base_url: str = "http://localhost:3000"
    overwrite_existing: bool = False
    sensitive_headers: list[str] = field(default_factory=lambda: ["authorization", "cookie", "x-api-key"])
    sensitive_fields: list[str] = field(default_factory=lambda: ["pass", "token", "secret", "key"])
    request_matcher: RequestMatcher | None = None
    response_transformer: ResponseTransformer | None = normalize_timestamps
    history_limit: int = 1000


@dataclass
class RecordingStats:
    recorded: int = 0
    played: int = 0
    missed: int = 0
    errors: int = 0


class RecordPlaybackEngine:
    """Persists and replays sanitized request/response pairs.

    The mode is one of record, playback or update and only changes through
    ``set_mode``. Recordings of the current cassette are indexed by request
    fingerprint; at most one recording is live per fingerprint.
    """

    def __init__(self, config: RecordConfig | None = None, *, clock: Clock | None = None) -> None:
        self.config = config or RecordConfig()
        self.clock = clock or SystemClock()
        self.mode = RecordMode.PLAYBACK
        self.current_cassette: str | None = None
        self.stats = RecordingStats()
        self._cassettes: dict[str, Cassette] = {}
        self._index: dict[str, Recording] = {}
        self._history: deque[RecordingHistoryEntry] = deque(maxlen=self.config.history_limit)

    def set_mode(self, mode: RecordMode | str) -> "RecordPlaybackEngine":
        try:
            self.mode = RecordMode(mode)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid mode: {mode}", details={"mode": str(mode)}) from exc
        LOGGER.info("recorder_mode_set", mode=self.mode.value)
        return self

    # --- fingerprinting and sanitizing ---

    def fingerprint(self, request: MockRequest | RecordedRequest | dict[str, Any]) -> str:
        """Fingerprint a live request over its unredacted body.

        Requests that differ only in a sensitive field must not share a key, so
        the hash is taken before redaction and stored on the recording.
        """

        if isinstance(request, RecordedRequest):
            return self._key(request)
        request = MockRequest.coerce(request)
        raw = self.sanitize_request(request).model_copy(update={"data": copy.deepcopy(request.data)})
        return self._key(raw)

    def _recording_key(self, recording: Recording) -> str:
        return recording.metadata.get("fingerprint") or self._key(recording.request)

    def _key(self, request: RecordedRequest) -> str:
        if self.config.request_matcher is not None:
            return self.config.request_matcher(request)
        return fingerprint_request(request, self.config.base_url)

    def sanitize_request(self, request: MockRequest) -> RecordedRequest:
        sensitive = {name.lower() for name in self.config.sensitive_headers}
        headers = {key: (REDACTED if key.lower() in sensitive else value) for key, value in request.headers.items()}
        return RecordedRequest(
            method=request.method,
            url=request.url,
            headers=headers,
            data=self.redact(copy.deepcopy(request.data)),
        )

    def sanitize_response(self, response: MockResponse) -> RecordedResponse:
        return RecordedResponse(
            status=response.status,
            status_text=response.status_text,
            headers=dict(response.headers),
            data=self.redact(copy.deepcopy(response.data)),
            duration=response.duration or 0,
        )

    def redact(self, value: Any) -> Any:
        """Redact every mapping key containing a sensitive substring, at any depth."""

        if isinstance(value, list):
            return [self.redact(item) for item in value]
        if not isinstance(value, dict):
            return value
        needles = [name.lower() for name in self.config.sensitive_fields]
        redacted: dict[str, Any] = {}
        for key, item in value.items():
            if item is not None and any(needle in str(key).lower() for needle in needles):
                redacted[key] = REDACTED
            else:
                redacted[key] = self.redact(item)
        return redacted

    # --- cassette lifecycle ---

    def cassette_path(self, name: str) -> Path:
        return self.config.recordings_dir / f"{name}.json"

    def load_cassette(self, name: str) -> Cassette:
        path = self.cassette_path(name)
        try:
            with path.open("r", encoding="utf-8") as fp:
                payload = json.load(fp)
            cassette = Cassette.model_validate(payload)
        except FileNotFoundError:
            cassette = Cassette(name=name)
            LOGGER.info("cassette_created", cassette=name, path=str(path))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise CassetteIOError(name, str(path), f"failed to load: {exc}") from exc

        self._cassettes[name] = cassette
        self.current_cassette = name
        self._index = {self._recording_key(recording): recording for recording in cassette.recordings}
        LOGGER.info("cassette_loaded", cassette=name, recordings=len(cassette.recordings))

        if not path.exists() and self.mode == RecordMode.RECORD:
            self.save_cassette(name)
        return cassette

    def save_cassette(self, name: str | None = None) -> Path:
        name = name or self.current_cassette
        if not name or name not in self._cassettes:
            raise ConfigurationError(f"Cassette {name} not found", details={"cassette": name})

        cassette = self._cassettes[name]
        cassette.updated_at = utcnow().isoformat()
        cassette.metadata.total_requests = len(cassette.recordings)
        cassette.metadata.unique_endpoints = len(
            {
                f"{recording.request.method} {urlsplit(urljoin(self.config.base_url, recording.request.url)).path}"
                for recording in cassette.recordings
            }
        )

        path = self.cassette_path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as fp:
                json.dump(cassette.as_serializable(), fp, indent=2, ensure_ascii=False)
        except OSError as exc:
            raise CassetteIOError(name, str(path), f"failed to save: {exc}") from exc
        LOGGER.info("cassette_saved", cassette=name, path=str(path), recordings=len(cassette.recordings))
        return path

    def list_cassettes(self) -> list[str]:
        directory = self.config.recordings_dir
        if not directory.is_dir():
            return []
        return sorted(path.stem for path in directory.glob("*.json"))

    def delete_cassette(self, name: str) -> None:
        path = self.cassette_path(name)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise CassetteIOError(name, str(path), f"failed to delete: {exc}") from exc
        self._cassettes.pop(name, None)
        if self.current_cassette == name:
            self.current_cassette = None
            self._index = {}
        LOGGER.info("cassette_deleted", cassette=name)

    def cassette_info(self, name: str | None = None) -> dict[str, Any] | None:
        name = name or self.current_cassette
        cassette = self._cassettes.get(name) if name else None
        if cassette is None:
            return None
        return {
            "name": cassette.name,
            "version": cassette.version,
            "createdAt": cassette.created_at,
            "updatedAt": cassette.updated_at,
            "recordingCount": len(cassette.recordings),
            "metadata": cassette.metadata.model_dump(by_alias=True),
        }

    # --- record / playback ---

    async def record(
        self,
        request: MockRequest | dict[str, Any],
        response: ResponseLike,
        metadata: dict[str, Any] | None = None,
    ) -> Recording | None:
        """Store a sanitized pair; returns the live recording for the request.

        Outside record/update mode nothing is stored and ``None`` is returned. In
        record mode an existing recording is kept and returned unchanged unless
        ``overwrite_existing`` is set.
        """

        if self.mode not in (RecordMode.RECORD, RecordMode.UPDATE):
            return None
        if not self.current_cassette:
            raise ConfigurationError("No cassette loaded for recording")

        request = MockRequest.coerce(request)
        response = MockResponse.coerce(response)
        sanitized_request = self.sanitize_request(request)
        sanitized_response = self.sanitize_response(response)
        if self.config.response_transformer is not None:
            transformed = await maybe_await(self.config.response_transformer(sanitized_response, sanitized_request))
            sanitized_response = (
                transformed if isinstance(transformed, RecordedResponse) else RecordedResponse.model_validate(transformed)
            )

        key = self.fingerprint(request)
        if not (self.mode == RecordMode.UPDATE or key not in self._index or self.config.overwrite_existing):
            LOGGER.debug("recording_kept", fingerprint=key)
            return self._index[key]

        recording = Recording(
            id=secrets.token_hex(8),
            request=sanitized_request,
            response=sanitized_response,
            timestamp=int(time.time() * 1000),
            duration=response.duration or 0,
            metadata={
                "userAgent": request.header("user-agent"),
                "ip": request.header("x-forwarded-for") or "unknown",
                **(metadata or {}),
                "fingerprint": key,
            },
        )
        cassette = self._cassettes[self.current_cassette]
        cassette.recordings = [item for item in cassette.recordings if self._recording_key(item) != key]
        cassette.recordings.append(recording)
        self._index[key] = recording
        self.stats.recorded += 1
        self._history.append(RecordingHistoryEntry(action="recorded", key=key))
        LOGGER.debug("request_recorded", fingerprint=key, recording_id=recording.id)
        return recording

    async def playback(
        self,
        request: MockRequest | dict[str, Any],
        *,
        allow_missing: bool = False,
        fallback: Fallback | None = None,
    ) -> MockResponse | None:
        if self.mode == RecordMode.RECORD:
            return None

        request = MockRequest.coerce(request)
        key = self.fingerprint(request)
        recording = self._index.get(key)
        if recording is not None:
            self.stats.played += 1
            self._history.append(RecordingHistoryEntry(action="played", key=key))
            stored = recording.response
            return MockResponse(
                status=stored.status,
                status_text=stored.status_text,
                headers=dict(stored.headers),
                data=copy.deepcopy(stored.data),
                duration=stored.duration,
                delay=0,
                recorded=True,
                recording_id=recording.id,
                recorded_at=datetime.fromtimestamp(recording.timestamp / 1000, tz=timezone.utc).isoformat(),
            )

        self.stats.missed += 1
        self._history.append(RecordingHistoryEntry(action="missed", key=key))
        LOGGER.warning(
            "recording_missed",
            method=request.method,
            url=request.url,
            fingerprint=key,
            cassette=self.current_cassette,
        )
        if allow_missing:
            return None
        if fallback is not None:
            result = await maybe_await(fallback(request))
            return None if result is None else MockResponse.coerce(result)
        raise MissingRecordingError(request.method, request.url, key, cassette=self.current_cassette)

    async def handle_request(
        self,
        request: MockRequest | dict[str, Any],
        make_real_request: RealRequest,
        *,
        allow_missing: bool = False,
        fallback: Fallback | None = None,
    ) -> MockResponse:
        request = MockRequest.coerce(request)
        try:
            if self.mode == RecordMode.PLAYBACK:
                recorded = await self.playback(request, allow_missing=allow_missing, fallback=fallback)
                if recorded is not None:
                    return recorded
                if not allow_missing:
                    raise MissingRecordingError(
                        request.method, request.url, self.fingerprint(request), cassette=self.current_cassette
                    )

            started = self.clock.now()
            response = MockResponse.coerce(await maybe_await(make_real_request(request)))
            response = response.model_copy(update={"duration": round((self.clock.now() - started) * 1000, 3)})

            if self.mode in (RecordMode.RECORD, RecordMode.UPDATE):
                await self.record(request, response)
            return response
        except Exception:
            self.stats.errors += 1
            raise

    # --- introspection ---

    def get_stats(self) -> dict[str, Any]:
        return {
            **asdict(self.stats),
            "mode": self.mode.value,
            "current_cassette": self.current_cassette,
            "loaded_cassettes": len(self._cassettes),
            "total_recordings": len(self._index),
        }

    def history(self, limit: int = 100) -> list[RecordingHistoryEntry]:
        return list(self._history)[-limit:]

    def clear_history(self) -> None:
        self._history.clear()

    def reset_stats(self) -> None:
        self.stats = RecordingStats()

    def clear(self) -> None:
        """Forget every in-memory cassette, recording, history entry and counter."""

        self._index.clear()
        self._cassettes.clear()
        self.current_cassette = None
        self.clear_history()
        self.reset_stats()


def with_recording(client: RealRequest, engine: RecordPlaybackEngine) -> Callable[[MockRequest | dict[str, Any]], Awaitable[MockResponse]]:
    """Wrap a request function so every call goes through ``engine.handle_request``."""

    async def recording_client(request: MockRequest | dict[str, Any]) -> MockResponse:
        return await engine.handle_request(request, client)

    return recording_client
