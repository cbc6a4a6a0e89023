"""
Schémas Pydantic pour les élections et les votes
"""
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime

from scrutin.schemas.biometric import SessionResponse


class ElectionOption(BaseModel):
    id: str
    name: str
    description: Optional[str] = None


class ElectionResponse(BaseModel):
    """Élection active"""
    id: int
    title: str
    description: Optional[str] = None
    options: List[ElectionOption]
    start_date: datetime
    end_date: datetime
    is_open: bool
    has_voted: bool = False


class VoteRequest(BaseModel):
    """Bulletin"""
    election_id: int
    option_id: str


class VoteResponse(BaseModel):
    """Bulletin enregistré"""
    vote_id: int
    election_id: int
    selected_option: str
    face_verified: bool
    blink_verified: bool
    created_at: datetime
    session: SessionResponse
