"""
joydrop.api.routes.organizations — Organization membership endpoints
=====================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import Engine

from joydrop.api.deps import get_engine
from joydrop.database.engine import run_db
from joydrop.services import aggregation_service, directory_service

router = APIRouter(prefix="/organizations", tags=["organizations"])


class MemberAdd(BaseModel):
    individual_email: str | None = None
    individual_id: str | None = None


@router.post("/{organization_id}/members")
async def add_member(
    organization_id: str,
    body: MemberAdd,
    engine: Engine = Depends(get_engine),
):
    """Link a consenting individual and fold their history into the org."""
    result = await run_db(
        aggregation_service.add_member,
        engine,
        organization_id,
        individual_id=body.individual_id,
        email=body.individual_email,
    )
    return result.to_dict()


@router.get("/{organization_id}/members")
def get_members(organization_id: str, engine: Engine = Depends(get_engine)):
    return directory_service.get_organization_members(engine, organization_id)
