"""
joydrop.api.routes.joydrops — Event intake endpoints
=====================================================

``POST /joydrops`` is the signed-in web flow; ``GET /thank-you-grams``
is called by external systems over plain HTTP with query parameters.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel
from sqlalchemy import Engine

from joydrop.api.deps import get_config, get_engine
from joydrop.config import JoydropConfig
from joydrop.database.engine import run_db
from joydrop.services import aggregation_service

router = APIRouter(tags=["joydrops"])


class JoydropCreate(BaseModel):
    individual_id: str | None = None
    url: str | None = None
    comment: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    city: str | None = None
    state_province: str | None = None
    country: str | None = None


@router.post("/joydrops", status_code=201)
async def log_joydrop(
    body: JoydropCreate,
    engine: Engine = Depends(get_engine),
    idempotency_key: str | None = Header(None),
):
    """Log one joydrop; a repeated ``Idempotency-Key`` returns the original."""
    fields = body.model_dump()
    individual_id = fields.pop("individual_id")
    result = await run_db(
        aggregation_service.log_event,
        engine,
        individual_id,
        idempotency_key=idempotency_key,
        **fields,
    )
    return result.to_dict()


@router.get("/thank-you-grams")
async def register_thank_you_gram(
    email: str | None = None,
    city: str | None = None,
    state_province: str | None = Query(None, alias="stateProvince"),
    country: str | None = None,
    lat: float | None = None,
    lng: float | None = None,
    engine: Engine = Depends(get_engine),
    cfg: JoydropConfig = Depends(get_config),
):
    result = await run_db(
        aggregation_service.register_thank_you_gram,
        engine,
        email=email,
        city=city,
        state_province=state_province,
        country=country,
        latitude=lat,
        longitude=lng,
        slug_retry_attempts=cfg.slug_retry_attempts,
    )
    return result.to_dict()
