"""
kinlink.config — YAML Configuration Loader
===========================================

**Why this file exists:**
This module reads ``config.yaml`` for the tunables of the connection engine
(code-allocation retry bound, request lifetime, API port).  Secrets such as
``DATABASE_URL`` and ``JWT_SECRET`` never live here; they come from the
environment (``.env``).

Usage::

    from kinlink.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.max_code_attempts)     # 10
    print(cfg.request_ttl)           # 7 days, 0:00:00
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import yaml

from kinlink.constants import MAX_CODE_ATTEMPTS, REQUEST_TTL_DAYS


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class KinlinkConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every field has a default so services can be built without a file
    (tests, one-off scripts).
    """

    # Code registry
    max_code_attempts: int = MAX_CODE_ATTEMPTS

    # Connection requests
    request_ttl_days: int = REQUEST_TTL_DAYS

    # API
    api_port: int = 8000

    @property
    def request_ttl(self) -> timedelta:
        return timedelta(days=self.request_ttl_days)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> KinlinkConfig:
    """Read *path* and return a :class:`KinlinkConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a numeric setting is not a positive integer.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return KinlinkConfig(
        max_code_attempts=_positive_int(raw, "max_code_attempts", MAX_CODE_ATTEMPTS),
        request_ttl_days=_positive_int(raw, "request_ttl_days", REQUEST_TTL_DAYS),
        api_port=_positive_int(raw, "api_port", 8000),
    )


def _positive_int(raw: dict, key: str, default: int) -> int:
    value = raw.get(key)
    if value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer, got {value!r}") from None
    if number <= 0:
        raise ValueError(f"{key} must be positive, got {number}")
    return number
