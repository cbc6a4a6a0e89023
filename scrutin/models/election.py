"""
Modèle pour les élections
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, JSON
from sqlalchemy.orm import relationship
from datetime import datetime

from scrutin.database import Base


class Election(Base):
    """Modèle Élection"""
    __tablename__ = "elections"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Options de vote: liste de chaînes ou d'objets {id, name, description}
    options = Column(JSON, nullable=False, default=list)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relations
    votes = relationship("Vote", back_populates="election")

    def normalized_options(self):
        """Options sous la forme {id, name, description}"""
        normalized = []
        for option in self.options or []:
            if isinstance(option, str):
                normalized.append({"id": option, "name": option, "description": None})
            else:
                normalized.append({
                    "id": str(option["id"]),
                    "name": option.get("name", str(option["id"])),
                    "description": option.get("description"),
                })
        return normalized

    def is_open(self, now: datetime) -> bool:
        return bool(self.is_active) and self.start_date <= now <= self.end_date

    def __repr__(self):
        return f"<Election {self.title}>"
