"""
Kinlink — Peer Connection Codes for Communities
================================================
Members share a short code; another member of the same community redeems it
to ask for a connection; the code's owner approves or rejects.  Approved
requests become undirected member connections.

Package layout::

    kinlink/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Code alphabet, lifetimes, log format
    ├── exceptions.py      # KinlinkError hierarchy
    ├── maintenance.py     # python -m kinlink.maintenance (backfill, expiry sweep)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Memberships, codes, requests, connections
    ├── engine/
    │   ├── codes.py       # Normalize / validate / generate codes
    │   └── outcomes.py    # RedeemOutcome + RedeemResult
    ├── services/
    │   ├── code_registry.py        # Active code per member, generate-with-retry
    │   ├── membership_guard.py     # Community membership checks
    │   ├── connection_store.py     # Undirected connections
    │   ├── connection_workflow.py  # Redeem / approve / reject / expire
    │   ├── connection_service.py   # Caller-facing facade
    │   ├── identity.py             # Identity providers
    │   └── backfill_service.py     # Code backfill for existing members
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine, config, JWT identity
        └── routes/        # /api/connections endpoints
"""

__version__ = "0.1.0"
