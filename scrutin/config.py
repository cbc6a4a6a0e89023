"""
Configuration de l'application de vote biométrique
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
import os


class Settings(BaseSettings):
    """Paramètres de configuration"""

    # Application
    APP_NAME: str = "Scrutin Biométrique"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Base de données
    DATABASE_URL: str = "sqlite+aiosqlite:///./scrutin.db"

    # Sécurité
    SECRET_KEY: str = "votre-cle-secrete-tres-longue-et-complexe-a-changer"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    BIOMETRIC_ENCRYPTION_KEY: Optional[str] = None

    # Modèle d'embedding (face_recognition / dlib)
    EMBEDDING_SIZE: int = 128

    # Vérification faciale
    FACE_MATCH_THRESHOLD: float = 0.6  # Distance euclidienne, plus petit = plus strict
    FACE_MAX_ATTEMPTS: int = 50  # 5 secondes à 100 ms

    # Détection de clignements (liveness)
    EAR_CLOSED_THRESHOLD: float = 0.25
    BLINK_CLOSE_DEBOUNCE_MS: int = 500
    BLINK_OPEN_DEBOUNCE_MS: int = 200
    REQUIRED_BLINKS: int = 3
    BLINK_SETTLE_MS: int = 1000
    BLINK_TIMEOUT_MS: int = 30000

    # Enrôlement
    ENROLLMENT_POSES: List[str] = ["frontal", "left", "right"]

    # Échantillonnage vidéo
    POLL_INTERVAL_MS: int = 100
    CAMERA_INDEX: int = 0
    CAMERA_WIDTH: int = 640
    CAMERA_HEIGHT: int = 480

    # Stockage
    UPLOAD_DIR: str = "uploads"
    PUBLIC_UPLOAD_PREFIX: str = "/uploads"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()

# Créer le dossier uploads s'il n'existe pas
os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
