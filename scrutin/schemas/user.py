"""
Schémas Pydantic pour les utilisateurs
"""
from pydantic import BaseModel, ConfigDict, EmailStr
from typing import Optional
from datetime import datetime
from scrutin.models.user import UserRole


class UserBase(BaseModel):
    """Schéma de base utilisateur"""
    email: EmailStr
    full_name: Optional[str] = None


class UserCreate(UserBase):
    """Création d'un électeur"""
    password: str


class UserResponse(UserBase):
    """Réponse utilisateur"""
    id: int
    role: UserRole
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    """Token JWT"""
    access_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    """Données du token"""
    user_id: Optional[int] = None
    email: Optional[str] = None
    role: Optional[str] = None
