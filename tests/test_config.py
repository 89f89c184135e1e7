"""
Tests for engine tuning values.
"""

import os

import pytest

from snaplink.config import DEFAULT_COPY_WORKER_CAP, EngineConfig, default_copy_workers
from snaplink.errors import ConfigurationError


def test_defaults():
    config = EngineConfig()
    assert config.max_depth == 3
    assert config.segment_limit is None
    assert config.entry_workers == 1
    assert config.staging_suffix == ".tmp"
    assert 1 <= config.resolved_copy_workers <= DEFAULT_COPY_WORKER_CAP


def test_default_copy_workers_is_capped(monkeypatch):
    monkeypatch.setattr(os, "cpu_count", lambda: 128)
    assert default_copy_workers() == 24
    monkeypatch.setattr(os, "cpu_count", lambda: None)
    assert default_copy_workers() == 1


def test_explicit_copy_workers_respect_cap():
    assert EngineConfig(copy_workers=64, copy_worker_cap=8).resolved_copy_workers == 8
    assert EngineConfig(copy_workers=4).resolved_copy_workers == 4


@pytest.mark.parametrize("kwargs", [
    {"max_depth": -1},
    {"segment_limit": 0},
    {"copy_workers": 0},
    {"copy_timeout": 0},
    {"entry_workers": 0},
    {"staging_suffix": ""},
    {"staging_suffix": "/tmp"},
])
def test_invalid_values(kwargs):
    with pytest.raises(ConfigurationError):
        EngineConfig(**kwargs)


def test_with_overrides_ignores_none():
    config = EngineConfig(max_depth=2)
    assert config.with_overrides(max_depth=None, copy_workers=None) is config
    assert config.with_overrides(copy_workers=3).copy_workers == 3
    assert config.with_overrides(copy_workers=3).max_depth == 2


def test_from_env():
    config = EngineConfig.from_env({
        "SNAPLINK_MAX_DEPTH": "1",
        "SNAPLINK_SEGMENT_LIMIT": "10",
        "SNAPLINK_COPY_WORKERS": "6",
        "SNAPLINK_COPY_TIMEOUT": "90.5",
        "SNAPLINK_ENTRY_WORKERS": " ",
    })
    assert config.max_depth == 1
    assert config.segment_limit == 10
    assert config.copy_workers == 6
    assert config.copy_timeout == 90.5
    assert config.entry_workers == 1


def test_from_env_rejects_non_numbers():
    with pytest.raises(ConfigurationError) as excinfo:
        EngineConfig.from_env({"SNAPLINK_MAX_DEPTH": "deep"})
    assert "SNAPLINK_MAX_DEPTH" in str(excinfo.value)
