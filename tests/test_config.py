"""
Tests for configuration models.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from kairos_query.config.models import AppConfig, DataSourceConfig, EnvSettings


def test_datasource_defaults():
    """Datasource settings default to the documented values."""
    cfg = DataSourceConfig(endpoint="http://kairos:8080/")
    assert cfg.endpoint == "http://kairos:8080"
    assert cfg.timeout_seconds == 30
    assert cfg.enforce_scalar_setting is False
    assert cfg.ignored_suffixes() == ["_1h", "_1d"]
    assert cfg.snap_to_intervals.startswith("1m,5m")


def test_datasource_rejects_invalid_values():
    """Bounds are validated."""
    with pytest.raises(ValidationError):
        DataSourceConfig(endpoint="http://kairos", timeout_seconds=0)


def test_app_config_load(tmp_path: Path):
    """Config files list datasources; the first is the default."""
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text(
        json.dumps(
            {
                "datasources": {
                    "prod": {"endpoint": "http://prod:8080"},
                    "dev": {"endpoint": "http://dev:8080", "metric_suffixes_to_ignore": ""},
                }
            }
        )
    )
    cfg = AppConfig.load(cfg_path)
    assert list(cfg.datasources) == ["prod", "dev"]
    assert cfg.default_source_id() == "prod"
    assert cfg.datasources["dev"].ignored_suffixes() == []


def test_explicit_default_datasource():
    """default_datasource overrides the first entry."""
    cfg = AppConfig.model_validate(
        {"datasources": {"a": {"endpoint": "http://a"}}, "default_datasource": "b"}
    )
    assert cfg.default_source_id() == "b"
    assert AppConfig().default_source_id() is None


def test_env_settings_prefix():
    """Environment variables use the KAIROS_QUERY_ prefix."""
    env = {
        "KAIROS_QUERY_LOG_LEVEL": "DEBUG",
        "KAIROS_QUERY_HTTP_TOKEN": "t",
        "KAIROS_QUERY_CORS_ORIGINS": "http://a, http://b",
    }
    with patch.dict(os.environ, env, clear=True):
        settings = EnvSettings()
    assert settings.log_level == "DEBUG"
    assert settings.http_token == "t"
    assert settings.cors_origin_list() == ["http://a", "http://b"]
