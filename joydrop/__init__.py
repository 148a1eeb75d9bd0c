"""
Joydrop — Two-Tier Good-Deed Tracking for Individuals & Organizations
=====================================================================
Every good deed an individual logs (a "Joydrop") raises their personal
count.  Individuals who belong to an organization raise the
organization's count in lockstep, and an individual who joins after
the fact has their history folded into the organization exactly once.

Package layout::

    joydrop/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Slug rules, leaderboard limits
    ├── errors.py          # Structured error taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # accounts, joydrops, memberships
    ├── engine/
    │   ├── slugs.py       # Slug normalization, validation, generation
    │   └── tiers.py       # Tier 1 / Tier 2 helpers
    ├── services/
    │   ├── registry_service.py       # Slug availability + claiming
    │   ├── account_service.py        # Individual / organization registration
    │   ├── aggregation_service.py    # log_event, add_member, ThankYouGrams
    │   ├── directory_service.py      # Leaderboards, members, stats
    │   └── reconciliation_service.py # Tier count drift detection
    ├── api/
    │   ├── main.py        # FastAPI app
    │   ├── deps.py        # Engine / config dependencies
    │   ├── errors.py      # Error envelope handler
    │   └── routes/        # Accounts, joydrops, organizations, public reads
    └── __main__.py        # serve / reconcile commands
"""

__version__ = "0.1.0"
