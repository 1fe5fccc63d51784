"""
kinlink.api.deps — FastAPI dependency injection
================================================
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy import Engine

from kinlink.config import KinlinkConfig, load_config
from kinlink.database.engine import create_db_engine
from kinlink.services.connection_service import ConnectionService
from kinlink.services.identity import BearerTokenIdentity

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "kinlink-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> KinlinkConfig:
    try:
        return load_config()
    except FileNotFoundError:
        logger.warning("config.yaml not found; using default connection settings")
        return KinlinkConfig()


def get_identity(
    authorization: Annotated[str | None, Header()] = None,
) -> BearerTokenIdentity:
    """Caller identity from the bearer token.  Validated lazily by the service."""
    return BearerTokenIdentity(authorization, JWT_SECRET, JWT_ALGORITHM)


def get_connection_service(
    engine: Annotated[Engine, Depends(get_engine)],
    config: Annotated[KinlinkConfig, Depends(get_config)],
    identity: Annotated[BearerTokenIdentity, Depends(get_identity)],
) -> ConnectionService:
    return ConnectionService(engine, identity, config=config)
