"""
Modèle pour le journal d'audit
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from scrutin.database import Base


class AuditAction(str, enum.Enum):
    """Types d'événements d'audit"""
    FACE_REGISTERED = "FACE_REGISTERED"
    FACE_VERIFICATION_SUCCESS = "FACE_VERIFICATION_SUCCESS"
    FACE_VERIFICATION_FAILED = "FACE_VERIFICATION_FAILED"
    BLINK_VERIFICATION_SUCCESS = "BLINK_VERIFICATION_SUCCESS"
    BLINK_VERIFICATION_FAILED = "BLINK_VERIFICATION_FAILED"
    VOTE_SUBMITTED = "VOTE_SUBMITTED"


class AuditLog(Base):
    """Journal d'audit (ajout seul)"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    action = Column(Enum(AuditAction), nullable=False)
    details = Column(JSON, nullable=True)

    # Métadonnées
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relations
    user = relationship("User", back_populates="audit_logs")

    def __repr__(self):
        return f"<AuditLog {self.action.value}>"
