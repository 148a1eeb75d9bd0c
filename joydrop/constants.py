"""
joydrop.constants — Shared Constants
=====================================

Single source of truth for slug rules and listing limits.  Import from
here instead of duplicating in services and routes.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Slugs
# ---------------------------------------------------------------------------
SLUG_MAX_LENGTH = 30
SLUG_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$")
DEFAULT_SLUG_RETRY_ATTEMPTS = 5

# ---------------------------------------------------------------------------
# Emails
# ---------------------------------------------------------------------------
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------
DEFAULT_LEADERBOARD_LIMIT = 10
MAX_LEADERBOARD_LIMIT = 100
DEFAULT_MAP_POINT_LIMIT = 1000

# Profile fields kept in the ``accounts.profile`` JSON document
INDIVIDUAL_PROFILE_FIELDS: tuple[str, ...] = (
    "address",
    "contact_number",
    "contact_email",
)

ORGANIZATION_PROFILE_FIELDS: tuple[str, ...] = (
    "org_type",
    "org_website",
    "address",
    "org_size",
    "contact_first_name",
    "contact_last_name",
    "contact_role",
    "contact_number",
    "contact_email",
    "featured_publicly",
    "beneficiary",
    "referrals",
)
