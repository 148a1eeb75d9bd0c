"""
joydrop.api.routes.accounts — Registration endpoints
=====================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import Engine

from joydrop.api.deps import get_config, get_engine
from joydrop.config import JoydropConfig
from joydrop.database.engine import run_db
from joydrop.services import account_service

router = APIRouter(prefix="/accounts", tags=["accounts"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class IndividualCreate(BaseModel):
    name: str | None = None
    email: str | None = None
    slug: str | None = None
    organization_id: str | None = None
    consent_to_join_org: bool = False
    city: str | None = None
    state_province: str | None = None
    country: str | None = None
    address: str | None = None
    contact_number: str | None = None
    contact_email: str | None = None


class OrganizationCreate(BaseModel):
    name: str | None = None
    email: str | None = None
    slug: str | None = None
    city: str | None = None
    state_province: str | None = None
    country: str | None = None
    org_type: str | None = None
    org_website: str | None = None
    address: str | None = None
    org_size: str | None = None
    contact_first_name: str | None = None
    contact_last_name: str | None = None
    contact_role: str | None = None
    contact_number: str | None = None
    contact_email: str | None = None
    featured_publicly: bool | None = None
    beneficiary: str | None = None
    referrals: str | None = None


# ---------------------------------------------------------------------------
# Individuals
# ---------------------------------------------------------------------------
@router.post("/individuals", status_code=201)
async def create_individual(body: IndividualCreate, engine: Engine = Depends(get_engine)):
    individual = await run_db(
        account_service.create_individual,
        engine,
        **body.model_dump(),
    )
    return {
        "id": individual.id,
        "slug": individual.slug,
        "organization_id": individual.organization_id,
    }


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------
@router.post("/organizations", status_code=201)
async def create_organization(
    body: OrganizationCreate,
    engine: Engine = Depends(get_engine),
    cfg: JoydropConfig = Depends(get_config),
):
    org = await run_db(
        account_service.create_organization,
        engine,
        slug_retry_attempts=cfg.slug_retry_attempts,
        **body.model_dump(),
    )
    return {"id": org.id, "slug": org.slug}


@router.get("/organizations")
def list_organizations(engine: Engine = Depends(get_engine)):
    """Organizations an individual can pick when registering."""
    return {"organizations": account_service.list_organizations(engine)}
