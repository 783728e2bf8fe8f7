"""Tests for configuration loading."""

from __future__ import annotations

import json

import pytest

from adaptive_rag_backend.config import get_settings, load_settings
from adaptive_rag_backend.retrieval import DEFAULT_ARMS

_MANAGED_VARS = (
    "FEEDBACK_LOOP_ENABLED",
    "BANDIT_ARMS_JSON",
    "BANDIT_CLUSTER_BUCKETS",
    "BANDIT_MAX_ASSIGNMENTS",
    "BANDIT_SEED",
    "CACHE_DEFAULT_TTL_SECONDS",
    "CACHE_BOOST_TTL_SECONDS",
    "CACHE_PUNISH_TTL_SECONDS",
    "CACHE_MIN_SOURCE_OVERLAP",
    "CACHE_LOOKUP_TOP_K",
    "CACHE_MAX_ENTRIES",
    "CONTEXT_STORE_MAX_ENTRIES",
    "REWARD_BUS_MAX_QUEUE_SIZE",
    "METRICS_ENABLED",
    "METRICS_PATH",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("adaptive_rag_backend.config.load_dotenv", lambda: None)
    for name in _MANAGED_VARS:
        monkeypatch.delenv(name, raising=False)


def test_load_settings_defaults() -> None:
    settings = load_settings()

    assert settings.feedback_loop_enabled is True
    assert settings.bandit_arms == DEFAULT_ARMS
    assert settings.bandit_cluster_buckets == 16
    assert settings.bandit_max_assignments is None
    assert settings.cache_default_ttl_seconds == 7 * 24 * 3600
    assert settings.cache_boost_ttl_seconds == 30 * 24 * 3600
    assert settings.cache_punish_ttl_seconds == 3600
    assert settings.cache_min_source_overlap == 0.4
    assert settings.cache_lookup_top_k == 6
    assert settings.cache_max_entries is None
    assert settings.reward_bus_max_queue_size == 0
    assert settings.metrics_enabled is False
    assert settings.metrics_path == "/metrics"


def test_custom_arms_from_json(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(
        "BANDIT_ARMS_JSON",
        json.dumps(
            [
                {"id": "narrow", "top_k": 3, "mmr_lambda": 0.8, "min_score": 0.3},
                {"top_k": 10, "mmr_lambda": 0.5, "min_score": 0.1},
            ]
        ),
    )

    settings = load_settings()

    assert [arm.id for arm in settings.bandit_arms] == ["narrow", "k10_l0.5_s0.1"]
    assert settings.bandit_arms[0].params.top_k == 3


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[]",
        '[{"top_k": 3, "mmr_lambda": 0.5}]',
        '[{"top_k": 0, "mmr_lambda": 0.5, "min_score": 0.1}]',
        '[{"id": "a", "top_k": 3, "mmr_lambda": 0.5, "min_score": 0.1},'
        ' {"id": "a", "top_k": 4, "mmr_lambda": 0.5, "min_score": 0.1}]',
    ],
)
def test_invalid_arms_rejected(monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
    monkeypatch.setenv("BANDIT_ARMS_JSON", raw)

    with pytest.raises(ValueError) as excinfo:
        load_settings()

    assert "BANDIT_ARMS_JSON" in str(excinfo.value)


def test_punish_ttl_must_be_below_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CACHE_DEFAULT_TTL_SECONDS", "600")
    monkeypatch.setenv("CACHE_PUNISH_TTL_SECONDS", "600")

    with pytest.raises(ValueError) as excinfo:
        load_settings()

    assert "CACHE_PUNISH_TTL_SECONDS" in str(excinfo.value)


@pytest.mark.parametrize("raw", ["0", ""])
def test_boost_can_be_disabled(monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
    monkeypatch.setenv("CACHE_BOOST_TTL_SECONDS", raw)
    assert load_settings().cache_boost_ttl_seconds is None


def test_boost_ttl_must_not_be_below_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CACHE_DEFAULT_TTL_SECONDS", "86400")
    monkeypatch.setenv("CACHE_BOOST_TTL_SECONDS", "3600")

    with pytest.raises(ValueError) as excinfo:
        load_settings()

    assert "CACHE_BOOST_TTL_SECONDS" in str(excinfo.value)


def test_default_boost_follows_longer_default_ttl(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CACHE_DEFAULT_TTL_SECONDS", str(60 * 24 * 3600))

    settings = load_settings()

    assert settings.cache_boost_ttl_seconds == settings.cache_default_ttl_seconds


def test_overlap_out_of_range(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CACHE_MIN_SOURCE_OVERLAP", "1.2")

    with pytest.raises(ValueError) as excinfo:
        load_settings()

    assert "CACHE_MIN_SOURCE_OVERLAP" in str(excinfo.value)


def test_invalid_boolean(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FEEDBACK_LOOP_ENABLED", "sometimes")

    with pytest.raises(ValueError) as excinfo:
        load_settings()

    assert "FEEDBACK_LOOP_ENABLED" in str(excinfo.value)


def test_optional_bounds(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BANDIT_MAX_ASSIGNMENTS", "5000")
    monkeypatch.setenv("CACHE_MAX_ENTRIES", "100")
    monkeypatch.setenv("FEEDBACK_LOOP_ENABLED", "false")

    settings = load_settings()

    assert settings.bandit_max_assignments == 5000
    assert settings.cache_max_entries == 100
    assert settings.feedback_loop_enabled is False


def test_metrics_path_must_be_absolute(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_PATH", "metrics")

    with pytest.raises(ValueError):
        load_settings()


def test_get_settings_is_cached() -> None:
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()
