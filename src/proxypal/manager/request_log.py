"""Request history built from the engine's access log.

The engine prints one line per proxied API call, in one of these shapes:

    2024/01/01 12:00:00 POST /v1/chat/completions 200 123ms
    [INFO] POST /v1/messages -> 200 (1.2s) model=claude-sonnet-4 tokens_in=10
    {"method": "POST", "path": "/v1/messages", "status": 200, "duration": 123}

RequestLogParser turns such lines into RequestRecords and ignores every
other line (startup banners, health checks on /v1/models, warnings).
RequestHistoryStore keeps the most recent records plus running token and
cost totals, persisted as JSON in the app directory.
"""

from __future__ import annotations

__all__ = [
    "RequestHistory",
    "RequestHistoryStore",
    "RequestLogParser",
    "RequestRecord",
    "detect_provider",
    "estimate_cost",
]

import json
import logging
import re
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from proxypal.config import get_history_path
from proxypal.constants import APP_NAME, REQUEST_API_PATHS, REQUEST_HISTORY_LIMIT
from proxypal.utils.file_helpers import atomic_write_text

_logger = logging.getLogger(f"{APP_NAME}.manager.request_log")

_METHOD = re.compile(r"\b(POST|GET|PUT|DELETE)\b")
_DURATION = re.compile(r"(?<![\w.])(\d+(?:\.\d+)?)(ms|s)\b")
_MODEL = re.compile(r"\bmodel[=:]\s*\"?([A-Za-z0-9][\w.:/-]*)")
_TOKENS_IN = re.compile(r"\b(?:tokens_in|input_tokens|prompt_tokens)[=:]\s*(\d+)")
_TOKENS_OUT = re.compile(r"\b(?:tokens_out|output_tokens|completion_tokens)[=:]\s*(\d+)")
_TOKEN_SEPARATORS = re.compile(r"[\s():>\[\],]+")

# Lines that mention an API path without being an access log entry
_NOISE_MARKERS = ("listening", "starting", "loaded", "config", "error:", "warn:")

# Keyword -> provider, checked in order when the model names none
_PROVIDER_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("claude", ("claude", "anthropic", "sonnet", "opus", "haiku")),
    ("openai", ("gpt", "codex", "openai")),
    ("gemini", ("gemini", "google")),
    ("qwen", ("qwen",)),
    ("iflow", ("iflow",)),
    ("vertex", ("vertex",)),
    ("antigravity", ("antigravity",)),
)

# Model substring(s) -> (input, output) USD per million tokens; first match wins
_PRICING: tuple[tuple[tuple[str, ...], float, float], ...] = (
    (("claude", "opus"), 15.0, 75.0),
    (("claude", "sonnet"), 3.0, 15.0),
    (("claude", "haiku"), 0.25, 1.25),
    (("gpt-5",), 15.0, 45.0),
    (("gpt-4o",), 2.5, 10.0),
    (("gpt-4",), 10.0, 30.0),
    (("gpt-3.5",), 0.5, 1.5),
    (("gemini", "pro"), 1.25, 5.0),
    (("gemini", "flash"), 0.075, 0.30),
    (("gemini-2",), 0.10, 0.40),
    (("qwen",), 0.50, 2.0),
)
_DEFAULT_PRICING = (1.0, 3.0)

# Model recorded when the log line names none (engine routed automatically)
_AUTO_MODEL = "auto"


class RequestRecord(BaseModel):
    """One proxied API call.

    Attributes:
        id: Record id (req_ + 12 hex chars).
        timestamp: When the line was seen.
        provider: Provider the call was routed to, or "unknown".
        model: Requested model, or "auto".
        method: HTTP method.
        path: API path.
        status: HTTP status (200 when the line shows none).
        duration_ms: Duration in milliseconds (0 when the line shows none).
        tokens_in: Input tokens, when logged.
        tokens_out: Output tokens, when logged.
    """

    id: str
    timestamp: datetime
    provider: str
    model: str = _AUTO_MODEL
    method: str
    path: str
    status: int = 200
    duration_ms: int = 0
    tokens_in: int | None = None
    tokens_out: int | None = None

    model_config = ConfigDict(frozen=True)


class RequestHistory(BaseModel):
    """Recent requests and totals since the history was last cleared."""

    requests: list[RequestRecord] = Field(default_factory=list)
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_cost_usd: float = 0.0


def detect_provider(model: str) -> str:
    """Provider serving a model name, or "unknown"."""
    name = model.lower()
    # gemini-claude-* models are served by antigravity
    if name.startswith("gemini-claude") or "antigravity" in name:
        return "antigravity"
    if any(word in name for word in ("claude", "sonnet", "opus", "haiku")):
        return "claude"
    if "gpt" in name or "codex" in name or name.startswith(("o1", "o3")):
        return "openai"
    if "gemini" in name:
        return "gemini"
    if "qwen" in name:
        return "qwen"
    if "deepseek" in name:
        return "deepseek"
    if "glm" in name:
        return "zhipu"
    return "unknown"


def estimate_cost(model: str, tokens_in: int, tokens_out: int) -> float:
    """Approximate USD cost of a call from list prices per million tokens."""
    name = model.lower()
    input_rate, output_rate = _DEFAULT_PRICING
    for needles, model_in, model_out in _PRICING:
        if all(needle in name for needle in needles):
            input_rate, output_rate = model_in, model_out
            break
    return tokens_in / 1_000_000 * input_rate + tokens_out / 1_000_000 * output_rate


class RequestLogParser:
    """Recognizes access log lines in engine output."""

    def parse(self, line: str) -> RequestRecord | None:
        """Parse one output line.

        Returns:
            The request, or None if the line is not an access log entry.
        """
        text = line.strip()
        if text.startswith("{"):
            fields = self._json_fields(text)
            if fields is not None:
                return self._from_json(fields)

        if not any(path in text for path in REQUEST_API_PATHS):
            return None
        method = _METHOD.search(text)
        if method is None:
            return None
        lowered = text.lower()
        if any(marker in lowered for marker in _NOISE_MARKERS):
            return None

        model_match = _MODEL.search(text)
        model = model_match.group(1) if model_match else _AUTO_MODEL
        return RequestRecord(
            id=_new_request_id(),
            timestamp=datetime.now(timezone.utc),
            provider=_provider_for(model, lowered),
            model=model,
            method=method.group(1),
            path=next(path for path in REQUEST_API_PATHS if path in text),
            status=_status_code(text) or 200,
            duration_ms=_duration_ms(text) or 0,
            tokens_in=_int_match(_TOKENS_IN, text),
            tokens_out=_int_match(_TOKENS_OUT, text),
        )

    def _json_fields(self, text: str) -> dict[str, Any] | None:
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    def _from_json(self, fields: dict[str, Any]) -> RequestRecord | None:
        path = fields.get("path")
        method = fields.get("method")
        if not isinstance(path, str) or not isinstance(method, str):
            return None
        api_path = next((candidate for candidate in REQUEST_API_PATHS if candidate in path), None)
        if api_path is None:
            return None

        model = fields.get("model")
        model = model if isinstance(model, str) and model else _AUTO_MODEL
        status = fields.get("status")
        duration = fields.get("duration_ms", fields.get("duration"))
        return RequestRecord(
            id=_new_request_id(),
            timestamp=datetime.now(timezone.utc),
            provider=_provider_for(model, json.dumps(fields).lower()),
            model=model,
            method=method.upper(),
            path=api_path,
            status=status if isinstance(status, int) and 100 <= status <= 599 else 200,
            duration_ms=int(duration) if isinstance(duration, (int, float)) else 0,
            tokens_in=_optional_int(fields.get("tokens_in", fields.get("input_tokens"))),
            tokens_out=_optional_int(fields.get("tokens_out", fields.get("output_tokens"))),
        )


def _new_request_id() -> str:
    return f"req_{secrets.token_hex(6)}"


def _provider_for(model: str, lowered_line: str) -> str:
    if model != _AUTO_MODEL:
        provider = detect_provider(model)
        if provider != "unknown":
            return provider
    for provider, keywords in _PROVIDER_KEYWORDS:
        if any(keyword in lowered_line for keyword in keywords):
            return provider
    return "unknown"


def _status_code(text: str) -> int | None:
    for token in _TOKEN_SEPARATORS.split(text):
        if len(token) == 3 and token.isdigit() and 100 <= int(token) <= 599:
            return int(token)
    return None


def _duration_ms(text: str) -> int | None:
    match = _DURATION.search(text)
    if match is None:
        return None
    value = float(match.group(1))
    return int(value if match.group(2) == "ms" else value * 1000)


def _int_match(pattern: re.Pattern[str], text: str) -> int | None:
    match = pattern.search(text)
    return int(match.group(1)) if match else None


def _optional_int(value: object) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


class RequestHistoryStore:
    """Persisted request history.

    Loaded lazily on first access. Write failures are logged, not raised:
    the in-memory history stays authoritative.

    Args:
        path: History file (defaults to get_history_path()).
        limit: Requests kept; totals still count trimmed requests.
    """

    def __init__(self, path: Path | None = None, *, limit: int = REQUEST_HISTORY_LIMIT) -> None:
        self._path = path or get_history_path()
        self._limit = limit
        self._history: RequestHistory | None = None

    @property
    def path(self) -> Path:
        return self._path

    def history(self) -> RequestHistory:
        """Current history (a copy)."""
        return self._loaded().model_copy(deep=True)

    def add(self, record: RequestRecord) -> None:
        """Record a request, update totals and persist."""
        history = self._loaded()
        history.requests.append(record)
        del history.requests[: -self._limit]
        history.total_tokens_in += record.tokens_in or 0
        history.total_tokens_out += record.tokens_out or 0
        history.total_cost_usd += estimate_cost(record.model, record.tokens_in or 0, record.tokens_out or 0)
        self._save()

    def clear(self) -> RequestHistory:
        """Drop every request and reset the totals."""
        self._history = RequestHistory()
        self._save()
        _logger.info({"event": "request_history_cleared", "message": "Request history cleared"})
        return self.history()

    def _loaded(self) -> RequestHistory:
        if self._history is None:
            self._history = self._load()
        return self._history

    def _load(self) -> RequestHistory:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return RequestHistory()
        except OSError as e:
            self._log_load_failure(e)
            return RequestHistory()
        try:
            history = RequestHistory.model_validate_json(text)
        except ValidationError as e:
            self._log_load_failure(e)
            return RequestHistory()
        del history.requests[: -self._limit]
        return history

    def _log_load_failure(self, error: Exception) -> None:
        _logger.warning(
            {
                "event": "request_history_invalid",
                "message": f"Ignoring unreadable request history: {error}",
                "error_type": type(error).__name__,
                "error_message": str(error),
                "details": {"path": str(self._path)},
            }
        )

    def _save(self) -> None:
        try:
            atomic_write_text(self._path, self._loaded().model_dump_json(indent=2))
        except OSError as e:
            _logger.error(
                {
                    "event": "request_history_save_failed",
                    "message": f"Failed to save request history: {e}",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
            )
