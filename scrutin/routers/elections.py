"""
Routes des élections
"""
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from scrutin.database import get_db
from scrutin.models.user import User
from scrutin.routers.auth import get_current_user
from scrutin.schemas.election import ElectionResponse, ElectionOption
from scrutin.services.vote_service import vote_service

router = APIRouter(prefix="/elections", tags=["Élections"])


@router.get("/", response_model=List[ElectionResponse])
async def list_elections(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Lister les élections actives (avec le statut de vote de l'électeur)"""
    elections = await vote_service.list_active_elections(db)
    voted = await vote_service.voted_election_ids(db, current_user.id)
    now = datetime.utcnow()

    return [
        ElectionResponse(
            id=election.id,
            title=election.title,
            description=election.description,
            options=[ElectionOption(**opt) for opt in election.normalized_options()],
            start_date=election.start_date,
            end_date=election.end_date,
            is_open=election.is_open(now),
            has_voted=election.id in voted,
        )
        for election in elections
    ]
