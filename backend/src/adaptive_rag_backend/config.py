"""Configuration management for the Adaptive RAG Backend."""

import json
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
import structlog

from .retrieval.answer_cache import (
    DEFAULT_CACHE_BOOST_TTL,
    DEFAULT_CACHE_PUNISH_TTL,
    DEFAULT_CACHE_TTL,
    DEFAULT_LOOKUP_TOP_K,
    DEFAULT_MIN_SOURCE_OVERLAP,
)
from .retrieval.bandit import DEFAULT_ARMS, Arm
from .retrieval.clustering import DEFAULT_CLUSTER_BUCKETS
from .retrieval.types import RetrievalParams

logger = structlog.get_logger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables."""

    app_env: str
    backend_host: str
    backend_port: int
    request_max_bytes: int
    feedback_loop_enabled: bool
    # Parameter bandit
    bandit_arms: tuple[Arm, ...]
    bandit_cluster_buckets: int
    bandit_max_assignments: Optional[int]
    bandit_seed: Optional[int]
    # Semantic answer cache
    cache_default_ttl_seconds: float
    cache_boost_ttl_seconds: Optional[float]
    cache_punish_ttl_seconds: float
    cache_min_source_overlap: float
    cache_lookup_top_k: int
    cache_max_entries: Optional[int]
    # Collaborators
    context_store_max_entries: Optional[int]
    reward_bus_max_queue_size: int
    # Observability
    metrics_enabled: bool
    metrics_path: str


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (true/false). Check your .env file.")


def _get_int(name: str, default: int, minimum: Optional[int] = None) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a valid integer. Check your .env file.") from exc
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}.")
    return value


def _get_optional_int(name: str, minimum: int = 1) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a valid integer. Check your .env file.") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} when set.")
    return value


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a valid number. Check your .env file.") from exc


def _parse_arms(raw: str) -> tuple[Arm, ...]:
    """Parse BANDIT_ARMS_JSON into an arm menu.

    Expected shape:
        [{"id": "k4", "top_k": 4, "mmr_lambda": 0.7, "min_score": 0.2}, ...]
    """
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("BANDIT_ARMS_JSON must be valid JSON.") from exc
    if not isinstance(parsed, list) or not parsed:
        raise ValueError("BANDIT_ARMS_JSON must be a non-empty JSON array.")

    arms: list[Arm] = []
    for item in parsed:
        if not isinstance(item, dict):
            raise ValueError("BANDIT_ARMS_JSON entries must be JSON objects.")
        try:
            params = RetrievalParams(
                top_k=int(item["top_k"]),
                mmr_lambda=float(item["mmr_lambda"]),
                min_score=float(item["min_score"]),
            )
            arm_id = str(item.get("id") or f"k{params.top_k}_l{params.mmr_lambda}_s{params.min_score}")
        except KeyError as exc:
            raise ValueError(
                f"BANDIT_ARMS_JSON entry is missing {exc.args[0]!r}."
            ) from exc
        except (TypeError, ValueError) as exc:
            raise ValueError(f"BANDIT_ARMS_JSON entry is invalid: {exc}") from exc
        arms.append(Arm(id=arm_id, params=params))

    ids = [arm.id for arm in arms]
    if len(set(ids)) != len(ids):
        raise ValueError("BANDIT_ARMS_JSON arm ids must be unique.")
    return tuple(arms)


def load_settings() -> Settings:
    """
    Load settings from environment variables.

    Returns:
        Settings instance with all configuration values

    Raises:
        ValueError: If an environment variable holds an invalid value
    """
    load_dotenv()

    app_env = os.getenv("APP_ENV", "development").strip().lower()

    backend_port = _get_int("BACKEND_PORT", 8000, minimum=1)
    request_max_bytes = _get_int("REQUEST_MAX_BYTES", 1048576, minimum=1)

    raw_arms = os.getenv("BANDIT_ARMS_JSON", "").strip()
    bandit_arms = _parse_arms(raw_arms) if raw_arms else DEFAULT_ARMS
    bandit_cluster_buckets = _get_int(
        "BANDIT_CLUSTER_BUCKETS", DEFAULT_CLUSTER_BUCKETS, minimum=1
    )
    bandit_max_assignments = _get_optional_int("BANDIT_MAX_ASSIGNMENTS")
    bandit_seed = _get_optional_int("BANDIT_SEED", minimum=0)

    cache_default_ttl_seconds = _get_float(
        "CACHE_DEFAULT_TTL_SECONDS", DEFAULT_CACHE_TTL.total_seconds()
    )
    cache_punish_ttl_seconds = _get_float(
        "CACHE_PUNISH_TTL_SECONDS", DEFAULT_CACHE_PUNISH_TTL.total_seconds()
    )
    raw_boost = os.getenv("CACHE_BOOST_TTL_SECONDS")
    if raw_boost is None:
        # Never below a longer configured default TTL.
        cache_boost_ttl_seconds: Optional[float] = max(
            DEFAULT_CACHE_BOOST_TTL.total_seconds(), cache_default_ttl_seconds
        )
    elif not raw_boost.strip() or raw_boost.strip() == "0":
        cache_boost_ttl_seconds = None
    else:
        cache_boost_ttl_seconds = _get_float("CACHE_BOOST_TTL_SECONDS", 0.0)

    if cache_default_ttl_seconds <= 0 or cache_punish_ttl_seconds <= 0:
        raise ValueError(
            "CACHE_DEFAULT_TTL_SECONDS and CACHE_PUNISH_TTL_SECONDS must be > 0."
        )
    if cache_punish_ttl_seconds >= cache_default_ttl_seconds:
        raise ValueError(
            f"CACHE_PUNISH_TTL_SECONDS ({cache_punish_ttl_seconds}) must be less "
            f"than CACHE_DEFAULT_TTL_SECONDS ({cache_default_ttl_seconds})."
        )
    if (
        cache_boost_ttl_seconds is not None
        and cache_boost_ttl_seconds < cache_default_ttl_seconds
    ):
        raise ValueError(
            f"CACHE_BOOST_TTL_SECONDS ({cache_boost_ttl_seconds}) must not be less "
            f"than CACHE_DEFAULT_TTL_SECONDS ({cache_default_ttl_seconds})."
        )

    cache_min_source_overlap = _get_float(
        "CACHE_MIN_SOURCE_OVERLAP", DEFAULT_MIN_SOURCE_OVERLAP
    )
    if not 0.0 <= cache_min_source_overlap <= 1.0:
        raise ValueError("CACHE_MIN_SOURCE_OVERLAP must be between 0 and 1.")
    cache_lookup_top_k = _get_int("CACHE_LOOKUP_TOP_K", DEFAULT_LOOKUP_TOP_K, minimum=1)
    cache_max_entries = _get_optional_int("CACHE_MAX_ENTRIES")

    context_store_max_entries = _get_optional_int("CONTEXT_STORE_MAX_ENTRIES")
    reward_bus_max_queue_size = _get_int("REWARD_BUS_MAX_QUEUE_SIZE", 0, minimum=0)

    metrics_path = os.getenv("METRICS_PATH", "/metrics").strip() or "/metrics"
    if not metrics_path.startswith("/"):
        raise ValueError("METRICS_PATH must start with '/'.")

    if bandit_max_assignments is None and app_env not in {"development", "dev", "test", "local"}:
        logger.warning("bandit_assignments_unbounded", env=app_env)

    return Settings(
        app_env=app_env,
        backend_host=os.getenv("BACKEND_HOST", "0.0.0.0"),
        backend_port=backend_port,
        request_max_bytes=request_max_bytes,
        feedback_loop_enabled=_get_bool("FEEDBACK_LOOP_ENABLED", True),
        bandit_arms=bandit_arms,
        bandit_cluster_buckets=bandit_cluster_buckets,
        bandit_max_assignments=bandit_max_assignments,
        bandit_seed=bandit_seed,
        cache_default_ttl_seconds=cache_default_ttl_seconds,
        cache_boost_ttl_seconds=cache_boost_ttl_seconds,
        cache_punish_ttl_seconds=cache_punish_ttl_seconds,
        cache_min_source_overlap=cache_min_source_overlap,
        cache_lookup_top_k=cache_lookup_top_k,
        cache_max_entries=cache_max_entries,
        context_store_max_entries=context_store_max_entries,
        reward_bus_max_queue_size=reward_bus_max_queue_size,
        metrics_enabled=_get_bool("METRICS_ENABLED", False),
        metrics_path=metrics_path,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once
    from environment variables.

    Returns:
        Cached Settings instance
    """
    return load_settings()
