# routers/teamwork_desk.py — Teamwork Desk integration endpoints
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import SourceType
from routers.sources import SourceOut, _source_to_out
from services import sources as sources_service
from services import teamwork_desk

router = APIRouter(prefix="/api/v1/integrations/teamwork-desk", tags=["Integrations"])


class ConnectionTest(BaseModel):
    site_name: Optional[str] = None
    api_key: Optional[str] = None


class ConnectionResult(BaseModel):
    success: bool
    message: str


class TeamworkSourceCreate(BaseModel):
    project_id: str
    name: str = Field(..., min_length=1, max_length=200)
    site_name: str
    api_key: str
    data_type: str = "tickets"


@router.post("/test-connection", response_model=ConnectionResult)
async def test_connection(
    data: ConnectionTest,
    user: CurrentUser = Depends(get_current_user),
):
    """Check the site name and API key against the Teamwork Desk API"""
    return await teamwork_desk.test_connection(data.site_name, data.api_key)


@router.post("/sources", response_model=SourceOut, status_code=201)
async def create_teamwork_source(
    data: TeamworkSourceCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Validate credentials, then create an api source holding the encrypted key"""
    await teamwork_desk.test_connection(data.site_name, data.api_key)
    config = teamwork_desk.connection_config(data.site_name, data.api_key, data.data_type)

    source = await sources_service.create_source(
        db, user.organisation_id, data.project_id, data.name, SourceType.API,
        api_connection_config=config,
    )
    return _source_to_out(source)
