"""Tests for engine configuration generation."""

from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest
import yaml

from proxypal.config import HOT_RELOAD_FIELDS, AppConfig
from proxypal.manager.engine_config import build_engine_config, hot_reload_payload, write_engine_config


class TestBuildEngineConfig:
    """Tests for the settings -> engine key mapping."""

    def test_maps_core_settings(self) -> None:
        config = AppConfig(port=9999, debug=True, routing_strategy="fill-first", proxy_api_key="k1")

        engine = build_engine_config(config)

        assert engine["port"] == 9999
        assert engine["debug"] is True
        assert engine["api-keys"] == ["k1"]
        assert engine["routing"] == {"strategy": "fill-first"}
        assert engine["auth-dir"] == "~/.cli-proxy-api"

    def test_management_api_is_local_only(self) -> None:
        engine = build_engine_config(AppConfig(management_key="secret"))

        assert engine["remote-management"]["allow-remote"] is False
        assert engine["remote-management"]["secret-key"] == "secret"

    def test_hot_reload_payload_covers_hot_fields(self) -> None:
        payload = hot_reload_payload(AppConfig(request_retry=5, force_model_mappings=True))

        assert len(payload) == len(HOT_RELOAD_FIELDS)
        assert payload["request-retry"] == 5
        assert payload["ampcode/force-model-mappings"] is True


class TestWriteEngineConfig:
    """Tests for write_engine_config()."""

    def test_writes_parseable_yaml(self, tmp_path: Path) -> None:
        target = write_engine_config(AppConfig(port=8400), tmp_path / "proxy-config.yaml")

        text = target.read_text()
        assert text.startswith("# Generated by proxypal")
        assert yaml.safe_load(text)["port"] == 8400

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_is_private(self, tmp_path: Path) -> None:
        target = write_engine_config(AppConfig(), tmp_path / "proxy-config.yaml")

        assert stat.S_IMODE(target.stat().st_mode) == 0o600
