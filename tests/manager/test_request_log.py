"""Tests for engine access log parsing and the request history store."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from proxypal.manager.request_log import (
    RequestHistoryStore,
    RequestLogParser,
    RequestRecord,
    detect_provider,
    estimate_cost,
)


def _record(request_id: str, *, model: str = "auto", tokens_in: int | None = None, tokens_out: int | None = None):
    return RequestRecord(
        id=request_id,
        timestamp=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        provider="claude",
        model=model,
        method="POST",
        path="/v1/messages",
        tokens_in=tokens_in,
        tokens_out=tokens_out,
    )


@pytest.fixture
def parser() -> RequestLogParser:
    return RequestLogParser()


class TestParser:
    """Tests for RequestLogParser.parse()."""

    def test_plain_access_line(self, parser: RequestLogParser) -> None:
        record = parser.parse("2024/01/01 12:00:00 POST /v1/chat/completions 502 123ms")

        assert record is not None
        assert record.method == "POST"
        assert record.path == "/v1/chat/completions"
        assert record.status == 502
        assert record.duration_ms == 123
        assert record.model == "auto"
        assert record.provider == "unknown"
        assert record.id.startswith("req_")

    def test_arrow_line_with_model_and_tokens(self, parser: RequestLogParser) -> None:
        record = parser.parse(
            "[INFO] POST /v1/messages -> 200 (1.5s) model=claude-sonnet-4-5 tokens_in=1200 tokens_out=300"
        )

        assert record is not None
        assert record.path == "/v1/messages"
        assert record.status == 200
        assert record.duration_ms == 1500
        assert record.model == "claude-sonnet-4-5"
        assert record.provider == "claude"
        assert (record.tokens_in, record.tokens_out) == (1200, 300)

    def test_routed_provider_keyword(self, parser: RequestLogParser) -> None:
        record = parser.parse("[gin] POST /v1/completions [qwen] 200 40ms")

        assert record is not None
        assert record.provider == "qwen"

    def test_json_line(self, parser: RequestLogParser) -> None:
        line = json.dumps(
            {"method": "post", "path": "/v1/chat/completions", "status": 429, "duration": 87, "model": "gpt-4o"}
        )

        record = parser.parse(line)

        assert record is not None
        assert record.method == "POST"
        assert record.status == 429
        assert record.duration_ms == 87
        assert record.provider == "openai"

    def test_missing_status_defaults_to_ok(self, parser: RequestLogParser) -> None:
        record = parser.parse("GET /v1/messages")

        assert record is not None
        assert record.status == 200
        assert record.duration_ms == 0

    @pytest.mark.parametrize(
        "line",
        [
            "GET /v1/models 200 3ms",
            "Starting server on /v1/chat/completions",
            "API server listening on :8317, POST /v1/messages enabled",
            "warn: POST /v1/messages retried",
            "loaded 3 clients",
            "",
            '{"method": "GET", "path": "/v1/models", "status": 200}',
            "[1, 2, 3]",
        ],
    )
    def test_non_request_lines_ignored(self, parser: RequestLogParser, line: str) -> None:
        assert parser.parse(line) is None

    def test_ids_are_unique(self, parser: RequestLogParser) -> None:
        first = parser.parse("POST /v1/messages 200")
        second = parser.parse("POST /v1/messages 200")

        assert first is not None and second is not None
        assert first.id != second.id


class TestProviderAndCost:
    """Tests for detect_provider() and estimate_cost()."""

    @pytest.mark.parametrize(
        ("model", "provider"),
        [
            ("gemini-claude-sonnet-4-5", "antigravity"),
            ("claude-opus-4", "claude"),
            ("o3-mini", "openai"),
            ("gpt-5-codex", "openai"),
            ("gemini-2.5-pro", "gemini"),
            ("qwen3-coder-plus", "qwen"),
            ("deepseek-v3", "deepseek"),
            ("glm-4.6", "zhipu"),
            ("mystery", "unknown"),
        ],
    )
    def test_detect_provider(self, model: str, provider: str) -> None:
        assert detect_provider(model) == provider

    def test_known_model_pricing(self) -> None:
        assert estimate_cost("claude-sonnet-4", 1_000_000, 1_000_000) == pytest.approx(18.0)
        assert estimate_cost("gemini-2.5-flash", 1_000_000, 0) == pytest.approx(0.075)

    def test_default_pricing(self) -> None:
        assert estimate_cost("auto", 500_000, 100_000) == pytest.approx(0.8)


class TestHistoryStore:
    """Tests for RequestHistoryStore."""

    def test_add_updates_totals_and_persists(self, tmp_path: Path) -> None:
        path = tmp_path / "history.json"
        store = RequestHistoryStore(path)

        store.add(_record("req_1", model="claude-sonnet-4", tokens_in=1_000_000, tokens_out=0))
        store.add(_record("req_2"))

        reloaded = RequestHistoryStore(path).history()
        assert [r.id for r in reloaded.requests] == ["req_1", "req_2"]
        assert reloaded.total_tokens_in == 1_000_000
        assert reloaded.total_cost_usd == pytest.approx(3.0)

    def test_keeps_only_recent_requests(self, tmp_path: Path) -> None:
        store = RequestHistoryStore(tmp_path / "history.json", limit=3)

        for n in range(5):
            store.add(_record(f"req_{n}", tokens_in=10))

        history = store.history()
        assert [r.id for r in history.requests] == ["req_2", "req_3", "req_4"]
        # Totals still count trimmed requests
        assert history.total_tokens_in == 50

    def test_history_is_a_copy(self, tmp_path: Path) -> None:
        store = RequestHistoryStore(tmp_path / "history.json")
        store.history().requests.append(_record("req_x"))

        assert store.history().requests == []

    def test_clear(self, tmp_path: Path) -> None:
        path = tmp_path / "history.json"
        store = RequestHistoryStore(path)
        store.add(_record("req_1", tokens_in=5))

        cleared = store.clear()

        assert cleared.requests == []
        assert cleared.total_tokens_in == 0
        assert RequestHistoryStore(path).history().requests == []

    def test_unreadable_file_starts_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "history.json"
        path.write_text("{not json")

        store = RequestHistoryStore(path)

        assert store.history().requests == []
        store.add(_record("req_1"))
        assert [r.id for r in RequestHistoryStore(path).history().requests] == ["req_1"]

    def test_save_failure_keeps_memory(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = RequestHistoryStore(blocker / "history.json")

        store.add(_record("req_1"))

        assert [r.id for r in store.history().requests] == ["req_1"]
