"""
joydrop.api.routes.public — Read-only public endpoints
=======================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import Engine

from joydrop.api.deps import get_config, get_engine
from joydrop.config import JoydropConfig
from joydrop.services import directory_service, registry_service

router = APIRouter(tags=["public"])


class SlugCheck(BaseModel):
    slug: str = ""


# ---------------------------------------------------------------------------
# POST /slugs/check
# ---------------------------------------------------------------------------
@router.post("/slugs/check")
def check_slug(body: SlugCheck, engine: Engine = Depends(get_engine)):
    """Advisory only; registration re-checks at write time."""
    return registry_service.check_slug_available(engine, body.slug)


# ---------------------------------------------------------------------------
# GET /leaderboard/{kind}
# ---------------------------------------------------------------------------
@router.get("/leaderboard/{kind}")
def get_leaderboard(
    kind: str,
    limit: int | None = Query(None, ge=1),
    engine: Engine = Depends(get_engine),
    cfg: JoydropConfig = Depends(get_config),
):
    """Top individuals or organizations by joydrop count."""
    limit = min(limit or cfg.leaderboard_default_limit, cfg.leaderboard_max_limit)
    return {
        "kind": kind,
        "entries": directory_service.get_leaderboard(engine, kind, limit),
    }


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------
@router.get("/stats")
def get_stats(engine: Engine = Depends(get_engine)):
    return directory_service.get_global_stats(engine)


@router.get("/stats/{slug}")
def get_profile_stats(slug: str, engine: Engine = Depends(get_engine)):
    return directory_service.get_profile_stats(engine, slug)


# ---------------------------------------------------------------------------
# GET /map
# ---------------------------------------------------------------------------
@router.get("/map")
def get_map(
    engine: Engine = Depends(get_engine),
    cfg: JoydropConfig = Depends(get_config),
):
    points = directory_service.get_map_points(engine, cfg.map_point_limit)
    return {"points": points, "total": len(points)}
