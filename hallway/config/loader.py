from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

_CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"

UNDERSIZED_TOPICS_PAD = "pad"
UNDERSIZED_TOPICS_REJECT = "reject"
_UNDERSIZED_TOPIC_POLICIES = {UNDERSIZED_TOPICS_PAD, UNDERSIZED_TOPICS_REJECT}

_DEFAULT_TOPIC_LIMITS = {
    "label_character_limit": 200,
    "max_topics_per_participant": 20,
}
_DEFAULT_COHORT_SETTINGS = {
    "undersized_topics": UNDERSIZED_TOPICS_PAD,
    "random_seed": None,
}
_DEFAULT_IDENTITY_HEADER = "X-Participant-Id"


# (path, mtime_ns or None when missing, parsed mapping)
_cached: Optional[Tuple[Path, Optional[int], Dict[str, Any]]] = None


def _file_stamp(path: Path) -> Optional[int]:
    try:
        return path.stat().st_mtime_ns
    except OSError:
        return None


def _read_config(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
            if isinstance(data, dict):
                return data
            logging.warning("Config file %s is not a mapping; using defaults.", path)
            return {}
    except FileNotFoundError:
        logging.warning("Configuration file %s not found; using defaults.", path)
        return {}
    except Exception as exc:  # noqa: BLE001
        logging.error("Failed to load configuration from %s: %s", path, exc)
        return {}


def load_config() -> Dict[str, Any]:
    """
    Load the application config from YAML, returning an empty mapping on error.

    The parsed file is reused until its path or modification time changes,
    so per-request lookups neither re-read the file nor repeat warnings.
    """
    global _cached
    path = _CONFIG_PATH
    stamp = _file_stamp(path)
    if _cached is None or _cached[0] != path or _cached[1] != stamp:
        _cached = (path, stamp, _read_config(path))
    return dict(_cached[2])


def _coerce_positive_int(value: Any, fallback: int) -> int:
    try:
        candidate = int(value)
        return candidate if candidate > 0 else fallback
    except Exception:  # noqa: BLE001
        return fallback


def get_topic_limits() -> Dict[str, int]:
    """Return topic nomination limits sourced from config with safe defaults."""
    config = load_config()
    section = config.get("topics") or {}
    limits = dict(_DEFAULT_TOPIC_LIMITS)
    limits["label_character_limit"] = _coerce_positive_int(
        section.get("label_character_limit"), limits["label_character_limit"]
    )
    limits["max_topics_per_participant"] = _coerce_positive_int(
        section.get("max_topics_per_participant"),
        limits["max_topics_per_participant"],
    )
    return limits


def get_cohort_settings() -> Dict[str, Any]:
    """
    Return cohort formation settings.

    ``undersized_topics`` decides what happens to a participant holding fewer
    than three topics: ``pad`` fills the slate with placeholder entries,
    ``reject`` refuses their check-in. Unknown values fall back to ``pad``.
    ``random_seed`` pins the partition shuffle when set to an integer.
    """
    config = load_config()
    section = config.get("cohorts") or {}
    defaults = dict(_DEFAULT_COHORT_SETTINGS)

    policy = str(section.get("undersized_topics") or "").strip().lower()
    if policy not in _UNDERSIZED_TOPIC_POLICIES:
        if policy:
            logging.warning(
                "Unknown undersized_topics policy %r; using %r.",
                policy,
                defaults["undersized_topics"],
            )
        policy = defaults["undersized_topics"]

    seed: Optional[int] = defaults["random_seed"]
    raw_seed = section.get("random_seed")
    if raw_seed is not None and not isinstance(raw_seed, bool):
        try:
            seed = int(raw_seed)
        except (TypeError, ValueError):
            logging.warning("Ignoring non-integer cohorts.random_seed %r.", raw_seed)

    return {"undersized_topics": policy, "random_seed": seed}


def get_identity_header() -> str:
    """
    Return the request header carrying the authenticated participant id.

    Priority:
    1) HALLWAY_IDENTITY_HEADER env var
    2) config.yaml identity.header
    3) X-Participant-Id
    """
    env_value = os.getenv("HALLWAY_IDENTITY_HEADER")
    if env_value and env_value.strip():
        return env_value.strip()

    config = load_config()
    section = config.get("identity") or {}
    value = section.get("header")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return _DEFAULT_IDENTITY_HEADER
