"""
joydrop.engine.slugs — Slug Normalization, Validation & Generation
===================================================================

Pure functions, no DB I/O.  Availability and claiming live in
:mod:`joydrop.services.registry_service`.

Rules: lowercase, 1–30 characters, ``[a-z0-9-]`` only, and never
starting or ending with a hyphen.
"""

from __future__ import annotations

import re
import time
from collections.abc import Iterator

from joydrop.constants import SLUG_MAX_LENGTH, SLUG_PATTERN
from joydrop.errors import InvalidSlug

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def normalize_slug(candidate: str) -> str:
    """Slugs are case-insensitive; the stored form is lowercase."""
    return candidate.strip().lower()


def slug_problem(candidate: str) -> str | None:
    """Return a human-readable reason *candidate* is malformed, or None."""
    if not candidate:
        return "Slug is required"
    if len(candidate) > SLUG_MAX_LENGTH:
        return f"Slug must be at most {SLUG_MAX_LENGTH} characters"
    if candidate.startswith("-") or candidate.endswith("-"):
        return "Slug cannot start or end with a hyphen"
    if not SLUG_PATTERN.match(candidate):
        return "Slug may only contain lowercase letters, digits and hyphens"
    return None


def validate_slug(candidate: str) -> str:
    """Normalize and validate *candidate*, returning the stored form.

    Raises :class:`~joydrop.errors.InvalidSlug` on malformed input.
    """
    if not isinstance(candidate, str):
        raise InvalidSlug()
    slug = normalize_slug(candidate)
    problem = slug_problem(slug)
    if problem:
        raise InvalidSlug(problem)
    return slug


def slugify(text: str, fallback_prefix: str = "user") -> str:
    """Derive a valid slug from a display name or email local part.

    Falls back to ``<prefix>-<epoch millis>`` when nothing usable remains.
    """
    slug = _NON_SLUG_CHARS.sub("-", text.lower()).strip("-")
    slug = slug[:SLUG_MAX_LENGTH].rstrip("-")
    if not slug:
        slug = f"{fallback_prefix}-{int(time.time() * 1000)}"
    return slug


def slug_candidates(base: str, attempts: int) -> Iterator[str]:
    """Yield *base* then ``base-1`` … ``base-<attempts>``, each ≤ 30 chars."""
    yield base
    for n in range(1, attempts + 1):
        suffix = f"-{n}"
        stem = base[: SLUG_MAX_LENGTH - len(suffix)].rstrip("-")
        yield f"{stem}{suffix}"
