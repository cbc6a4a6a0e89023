"""
Élections actives et dépôt des bulletins
"""
from datetime import datetime
from typing import List, Optional, Set
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from scrutin.models.election import Election
from scrutin.models.vote import Vote
from scrutin.services.errors import (
    DuplicateVoteError, ElectionClosedError, UnknownElectionError, UnknownOptionError
)

logger = logging.getLogger(__name__)


class VoteService:
    """Accès aux élections et aux votes"""

    async def list_active_elections(self, db: AsyncSession) -> List[Election]:
        """Élections actives, les plus récentes d'abord"""
        result = await db.execute(
            select(Election)
            .where(Election.is_active.is_(True))
            .order_by(Election.created_at.desc(), Election.id.desc())
        )
        return list(result.scalars().all())

    async def get_election(self, db: AsyncSession, election_id: int) -> Optional[Election]:
        result = await db.execute(select(Election).where(Election.id == election_id))
        return result.scalar_one_or_none()

    async def voted_election_ids(self, db: AsyncSession, user_id: int) -> Set[int]:
        result = await db.execute(select(Vote.election_id).where(Vote.user_id == user_id))
        return set(result.scalars().all())

    async def insert_vote(
        self,
        db: AsyncSession,
        user_id: int,
        election_id: int,
        option_id: str,
        face_verified: bool,
        blink_verified: bool,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Vote:
        """
        Enregistrer un bulletin
        Lève DuplicateVoteError si l'électeur a déjà voté (contrainte d'unicité).
        """
        election = await self.get_election(db, election_id)
        if election is None:
            raise UnknownElectionError()
        if not election.is_open(datetime.utcnow()):
            raise ElectionClosedError()
        if option_id not in {opt["id"] for opt in election.normalized_options()}:
            raise UnknownOptionError()

        vote = Vote(
            user_id=user_id,
            election_id=election_id,
            selected_option=option_id,
            face_verified=face_verified,
            blink_verified=blink_verified,
            ip_address=ip_address,
            user_agent=user_agent[:255] if user_agent else None,
        )
        db.add(vote)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.warning(f"Vote en double refusé (user_id={user_id}, election_id={election_id})")
            raise DuplicateVoteError()

        await db.refresh(vote)
        logger.info(f"Vote enregistré (user_id={user_id}, election_id={election_id})")
        return vote


# Instance globale
vote_service = VoteService()
