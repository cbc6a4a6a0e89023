"""
Journal d'audit (ajout seul, au mieux)
Chaque événement est écrit dans sa propre session: un échec n'expire pas
les objets de la requête en cours (ex. le bulletin déjà enregistré).
"""
from typing import Any, Callable, Dict, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scrutin.database import async_session_maker
from scrutin.models.audit_log import AuditLog, AuditAction

logger = logging.getLogger(__name__)


class AuditService:
    """Puits d'audit: une erreur d'écriture est journalisée, jamais propagée"""

    def __init__(self, session_maker: Callable[[], AsyncSession] = async_session_maker):
        self.session_maker = session_maker

    async def append(
        self,
        user_id: Optional[int],
        action: AuditAction,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        """
        Ajouter un événement d'audit
        Returns:
            True si l'événement a été écrit
        """
        async with self.session_maker() as db:
            db.add(AuditLog(
                user_id=user_id,
                action=action,
                details=details or {},
                ip_address=ip_address,
                user_agent=user_agent,
            ))
            try:
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Échec d'écriture de l'audit {action.value} (user_id={user_id}): {e}")
                return False

        logger.info(f"Audit {action.value} (user_id={user_id})")
        return True


# Instance globale
audit_service = AuditService()
