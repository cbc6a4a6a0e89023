# Modèles de données
# Importer tous les modèles pour que SQLAlchemy puisse résoudre les relations

from scrutin.models.user import User, UserRole
from scrutin.models.profile import Profile
from scrutin.models.election import Election
from scrutin.models.vote import Vote
from scrutin.models.audit_log import AuditLog, AuditAction

__all__ = [
    "User",
    "UserRole",
    "Profile",
    "Election",
    "Vote",
    "AuditLog",
    "AuditAction",
]
