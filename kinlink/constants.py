"""
kinlink.constants — Shared Constants
======================================

Single source of truth for the connection-code alphabet, code length and the
lifecycle defaults used by the registry and the request workflow.
Import from here instead of duplicating in services, API and tests.
"""

from __future__ import annotations

from datetime import timedelta

# ---------------------------------------------------------------------------
# Connection codes
# ---------------------------------------------------------------------------
# Digits 2-9 plus A-Z without I and O: 8 + 24 = 32 characters.
CODE_ALPHABET: str = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
CODE_LENGTH: int = 8

# Upper bound on generate → insert attempts before giving up.
MAX_CODE_ATTEMPTS: int = 10


# ---------------------------------------------------------------------------
# Connection requests
# ---------------------------------------------------------------------------
REQUEST_TTL_DAYS: int = 7
REQUEST_TTL: timedelta = timedelta(days=REQUEST_TTL_DAYS)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_FORMAT = "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s"
LOG_DATEFMT = "%H:%M:%S"
