"""
Profils biométriques et stockage des images d'enrôlement
"""
from datetime import datetime
from pathlib import Path
from typing import Optional
import asyncio
import logging

import numpy as np
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scrutin.config import settings
from scrutin.models.profile import Profile
from scrutin.services.encryption_service import get_encryption_service
from scrutin.services.errors import EmbeddingShapeError

logger = logging.getLogger(__name__)


class ProfileService:
    """Accès aux profils (gabarit chiffré, image, drapeau vérifié)"""

    def __init__(self, upload_dir: str = None, public_prefix: str = None):
        self.upload_dir = Path(upload_dir or settings.UPLOAD_DIR)
        self.public_prefix = (public_prefix or settings.PUBLIC_UPLOAD_PREFIX).rstrip("/")

    async def get_profile(self, db: AsyncSession, user_id: int) -> Optional[Profile]:
        result = await db.execute(select(Profile).where(Profile.user_id == user_id))
        return result.scalar_one_or_none()

    async def upsert_profile(self, db: AsyncSession, user_id: int, **fields) -> Profile:
        """Créer ou mettre à jour le profil (un seul commit)"""
        profile = await self.get_profile(db, user_id)
        if profile is None:
            profile = Profile(user_id=user_id, **fields)
            db.add(profile)
        else:
            for name, value in fields.items():
                setattr(profile, name, value)
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        await db.refresh(profile)
        return profile

    async def save_template(
        self,
        db: AsyncSession,
        user_id: int,
        template: np.ndarray,
        image_url: Optional[str] = None,
    ) -> Profile:
        """Remplacer le gabarit de référence (jamais de fusion avec l'ancien)"""
        vector = np.asarray(template, dtype=np.float64).ravel()
        encrypted = get_encryption_service().encrypt(vector.tobytes())
        logger.info(f"Gabarit facial enregistré pour user_id={user_id} ({vector.size} dimensions)")
        return await self.upsert_profile(
            db,
            user_id,
            face_descriptor=encrypted,
            face_image_url=image_url,
            is_verified=True,
            enrolled_at=datetime.utcnow(),
        )

    def decode_template(self, profile: Optional[Profile]) -> Optional[np.ndarray]:
        """Déchiffrer le gabarit d'un profil (None si absent)"""
        if profile is None or not profile.face_descriptor:
            return None
        raw = get_encryption_service().decrypt(profile.face_descriptor)
        template = np.frombuffer(raw, dtype=np.float64)
        if template.size != settings.EMBEDDING_SIZE:
            raise EmbeddingShapeError(
                f"Gabarit de {template.size} dimensions, {settings.EMBEDDING_SIZE} attendues"
            )
        return template

    async def load_template(self, db: AsyncSession, user_id: int) -> Optional[np.ndarray]:
        return self.decode_template(await self.get_profile(db, user_id))

    async def store_image(self, path: str, blob: bytes) -> str:
        """
        Stocker une image sous UPLOAD_DIR
        Returns:
            Référence publique (URL relative servie par /uploads)
        """
        target = self.upload_dir / path
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_bytes, blob)
        return f"{self.public_prefix}/{path}"


# Instance globale
profile_service = ProfileService()
