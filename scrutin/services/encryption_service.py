"""
Chiffrement des gabarits faciaux stockés
Utilise Fernet (AES-128-CBC avec HMAC-SHA256)
"""
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from typing import Optional
import base64
import logging

logger = logging.getLogger(__name__)


class EncryptionService:
    """Chiffrement/déchiffrement des gabarits biométriques"""

    def __init__(self, encryption_key: Optional[str] = None):
        """
        Args:
            encryption_key: Clé de chiffrement. Si None, clé par défaut (développement).
        """
        if not encryption_key:
            logger.warning("Aucune clé de chiffrement fournie - utilisation d'une clé par défaut (NON SÉCURISÉ)")
            encryption_key = "default-encryption-key-change-this"
        self._fernet = self._create_fernet_from_key(encryption_key)

    def _create_fernet_from_key(self, key: str) -> Fernet:
        """
        Dériver une clé Fernet de 32 bytes avec PBKDF2
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b'scrutin_face_template_v1',
            iterations=100000,
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(key.encode())))

    def encrypt(self, data: bytes) -> bytes:
        """Chiffrer des données binaires"""
        encrypted = self._fernet.encrypt(data)
        logger.debug(f"Données chiffrées: {len(data)} bytes -> {len(encrypted)} bytes")
        return encrypted

    def decrypt(self, encrypted_data: bytes) -> bytes:
        """
        Déchiffrer des données
        Lève ValueError si la clé est incorrecte ou les données corrompues.
        """
        try:
            return self._fernet.decrypt(encrypted_data)
        except InvalidToken:
            logger.error("Échec du déchiffrement: token invalide (clé incorrecte ou données corrompues)")
            raise ValueError("Impossible de déchiffrer le gabarit facial. Clé incorrecte ou données corrompues.")


# Instance globale - initialisée à la première utilisation
encryption_service = None


def get_encryption_service() -> EncryptionService:
    """
    Retourne l'instance du service de chiffrement
    Lazy initialization pour attendre que la config soit chargée
    """
    global encryption_service

    if encryption_service is None:
        from scrutin.config import settings
        encryption_service = EncryptionService(settings.BIOMETRIC_ENCRYPTION_KEY)

    return encryption_service
