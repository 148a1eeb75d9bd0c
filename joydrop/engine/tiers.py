"""
joydrop.engine.tiers — Tier 1 / Tier 2 helpers
===============================================

Tier 1 is an individual's personal joydrop count; Tier 2 is an
organization's aggregate.  Pure helpers shared by the directory
service and the map projection.
"""

from __future__ import annotations

import enum


class Tier(enum.IntEnum):
    INDIVIDUAL = 1
    ORGANIZATION = 2


def tier_for_event(organization_id: str | None) -> Tier:
    """Events logged while linked to an organization count toward Tier 2."""
    return Tier.ORGANIZATION if organization_id else Tier.INDIVIDUAL


def calculate_contribution(individual_count: int, organization_total: int) -> int:
    """Percentage of *organization_total* contributed by one member.

    Rounded to the nearest whole percent and capped at 100.
    """
    if not organization_total:
        return 0
    return min(100, round(individual_count / organization_total * 100))
