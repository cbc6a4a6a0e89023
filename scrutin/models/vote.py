"""
Modèle pour les bulletins de vote
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from scrutin.database import Base


class Vote(Base):
    """Bulletin déposé par un électeur (immuable)"""
    __tablename__ = "votes"
    # Un seul vote par électeur et par élection
    __table_args__ = (
        UniqueConstraint("user_id", "election_id", name="uq_vote_user_election"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    election_id = Column(Integer, ForeignKey("elections.id"), nullable=False)
    selected_option = Column(String(255), nullable=False)

    # Drapeaux de vérification déclarés par la session
    face_verified = Column(Boolean, default=False)
    blink_verified = Column(Boolean, default=False)

    # Contexte
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relations
    user = relationship("User", back_populates="votes")
    election = relationship("Election", back_populates="votes")

    def __repr__(self):
        return f"<Vote user={self.user_id} election={self.election_id}>"
