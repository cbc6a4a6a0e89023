"""
Profil biométrique d'un électeur
"""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, LargeBinary, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime

from scrutin.database import Base


class Profile(Base):
    """
    Stocke le gabarit facial de référence (pas les images brutes)
    - face_descriptor: moyenne des embeddings d'enrôlement (128 dimensions), chiffrée
    - face_image_url: référence publique d'une image représentative
    """
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    face_descriptor = Column(LargeBinary, nullable=True)
    face_image_url = Column(String(500), nullable=True)
    is_verified = Column(Boolean, default=False)

    # Métadonnées
    enrolled_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relation
    user = relationship("User", back_populates="profile")

    @property
    def has_template(self) -> bool:
        return bool(self.face_descriptor)

    def __repr__(self):
        return f"<Profile user_id={self.user_id} verified={self.is_verified}>"
