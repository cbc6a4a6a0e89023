"""
Vérification faciale: comparaison d'un flux d'embeddings au gabarit de référence
Machine à états: waiting -> verifying -> success | failed
"""
from dataclasses import dataclass
from typing import Optional
import enum
import logging

import numpy as np

from scrutin.config import settings
from scrutin.services.errors import MissingReferenceError
from scrutin.services.detection import Detection
from scrutin.services.signals import embedding_distance

logger = logging.getLogger(__name__)


class MatchStatus(str, enum.Enum):
    """Statuts de la vérification faciale"""
    WAITING = "waiting"
    VERIFYING = "verifying"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class MatchOutcome:
    """État de la vérification après un tick"""
    status: MatchStatus
    attempts: int
    threshold: float
    distance: Optional[float] = None
    reason: Optional[str] = None


class FaceMatcher:
    """Comparateur à nombre de tentatives borné"""

    def __init__(self, threshold: float = 0.6, max_attempts: int = 50):
        """
        Args:
            threshold: distance maximale (exclue) pour accepter un visage
            max_attempts: nombre de ticks avant échec "timeout"
        """
        self.threshold = threshold
        self.max_attempts = max_attempts
        self.reference: Optional[np.ndarray] = None
        self.reset()

    @classmethod
    def from_settings(cls) -> "FaceMatcher":
        return cls(
            threshold=settings.FACE_MATCH_THRESHOLD,
            max_attempts=settings.FACE_MAX_ATTEMPTS,
        )

    def reset(self):
        self.status = MatchStatus.WAITING
        self.attempts = 0
        self.last_distance: Optional[float] = None
        self.reason: Optional[str] = None

    def start(self, reference):
        """
        Démarrer (ou relancer) la vérification
        Lève MissingReferenceError si aucun gabarit n'est chargé.
        """
        if reference is None or len(reference) == 0:
            raise MissingReferenceError()
        self.reset()
        self.reference = np.asarray(reference, dtype=np.float64)
        self.status = MatchStatus.VERIFYING

    def outcome(self) -> MatchOutcome:
        return MatchOutcome(
            status=self.status,
            attempts=self.attempts,
            threshold=self.threshold,
            distance=self.last_distance,
            reason=self.reason,
        )

    def tick(self, detection: Optional[Detection]) -> MatchOutcome:
        """
        Traiter un tick de vérification
        Chaque tick consomme une tentative; un tick sans visage n'est pas un échec.
        """
        if self.status != MatchStatus.VERIFYING:
            return self.outcome()

        self.attempts += 1

        if detection is not None and detection.embedding is not None:
            distance = embedding_distance(self.reference, detection.embedding)
            self.last_distance = distance
            logger.info(f"Distance faciale: {distance:.4f} (seuil {self.threshold})")
            if distance < self.threshold:
                self.status = MatchStatus.SUCCESS
                return self.outcome()

        if self.attempts >= self.max_attempts:
            self.status = MatchStatus.FAILED
            self.reason = "timeout"
            logger.warning(f"Vérification faciale expirée après {self.attempts} tentatives")

        return self.outcome()
