"""
Détection de clignements (preuve de vivacité)
Machine à états: waiting -> detecting -> completed | failed

Un clignement = fermeture (EAR < seuil) puis réouverture, avec deux fenêtres
anti-rebond mesurées depuis le dernier clignement compté:
- fermeture acceptée seulement après BLINK_CLOSE_DEBOUNCE_MS
- réouverture comptée seulement après BLINK_OPEN_DEBOUNCE_MS
Les temps sont en millisecondes (horloge monotone fournie par l'appelant).
"""
from dataclasses import dataclass
from typing import Optional
import enum
import logging
import math

from scrutin.config import settings

logger = logging.getLogger(__name__)


class BlinkStatus(str, enum.Enum):
    """Statuts de la vérification par clignement"""
    WAITING = "waiting"
    DETECTING = "detecting"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BlinkUpdate:
    """Résultat d'un échantillon"""
    status: BlinkStatus
    blink_count: int
    blink_detected: bool = False
    eye_closed: bool = False
    ear: Optional[float] = None


class BlinkDetector:
    """Compteur de clignements avec hystérésis temporelle et délai maximal"""

    def __init__(
        self,
        closed_threshold: float = 0.25,
        close_debounce_ms: float = 500,
        open_debounce_ms: float = 200,
        required_blinks: int = 3,
        settle_ms: float = 1000,
        timeout_ms: float = 30000,
    ):
        self.closed_threshold = closed_threshold
        self.close_debounce_ms = close_debounce_ms
        self.open_debounce_ms = open_debounce_ms
        self.required_blinks = required_blinks
        self.settle_ms = settle_ms
        self.timeout_ms = timeout_ms
        self.reset()

    @classmethod
    def from_settings(cls) -> "BlinkDetector":
        return cls(
            closed_threshold=settings.EAR_CLOSED_THRESHOLD,
            close_debounce_ms=settings.BLINK_CLOSE_DEBOUNCE_MS,
            open_debounce_ms=settings.BLINK_OPEN_DEBOUNCE_MS,
            required_blinks=settings.REQUIRED_BLINKS,
            settle_ms=settings.BLINK_SETTLE_MS,
            timeout_ms=settings.BLINK_TIMEOUT_MS,
        )

    def reset(self):
        """Revenir à l'état initial (sortie d'étape)"""
        self.status = BlinkStatus.WAITING
        self.blink_count = 0
        self.eye_closed = False
        self.last_blink_at: Optional[float] = None
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

    def start(self, now: float):
        """Démarrer (ou relancer) la détection, compteurs remis à zéro"""
        self.reset()
        self.status = BlinkStatus.DETECTING
        self.started_at = now
        logger.info("Détection de clignements démarrée")

    @property
    def deadline(self) -> Optional[float]:
        if self.started_at is None:
            return None
        return self.started_at + self.timeout_ms

    def _update(self, detected: bool = False, ear: Optional[float] = None) -> BlinkUpdate:
        return BlinkUpdate(
            status=self.status,
            blink_count=self.blink_count,
            blink_detected=detected,
            eye_closed=self.eye_closed,
            ear=ear,
        )

    def expire_if_due(self, now: float) -> bool:
        """Passer à failed si le délai est écoulé. Retourne True si expiré."""
        if self.status != BlinkStatus.DETECTING:
            return False
        if now - self.started_at >= self.timeout_ms:
            self.status = BlinkStatus.FAILED
            self.eye_closed = False
            logger.warning(
                f"Délai de clignement dépassé ({self.blink_count}/{self.required_blinks})"
            )
            return True
        return False

    def skip(self, now: float) -> BlinkUpdate:
        """Aucun visage sur ce tick: seul le délai est évalué"""
        self.expire_if_due(now)
        return self._update()

    def feed(self, ear: float, now: float) -> BlinkUpdate:
        """
        Traiter un échantillon d'EAR moyen
        Args:
            ear: EAR moyen des deux yeux
            now: instant de l'échantillon (ms)
        """
        if self.status != BlinkStatus.DETECTING:
            return self._update(ear=ear)
        if self.expire_if_due(now):
            return self._update(ear=ear)
        if ear is None or math.isnan(ear):
            return self._update()

        since_last = math.inf if self.last_blink_at is None else now - self.last_blink_at

        if ear < self.closed_threshold:
            # Front de fermeture
            if not self.eye_closed and since_last >= self.close_debounce_ms:
                self.eye_closed = True
            return self._update(ear=ear)

        # Front d'ouverture: fin du clignement
        if self.eye_closed and since_last >= self.open_debounce_ms:
            self.blink_count += 1
            self.eye_closed = False
            self.last_blink_at = now
            logger.info(f"Clignement {self.blink_count}/{self.required_blinks} détecté")
            if self.blink_count >= self.required_blinks:
                self.status = BlinkStatus.COMPLETED
                self.completed_at = now
            return self._update(detected=True, ear=ear)

        return self._update(ear=ear)

    def settled(self, now: float) -> bool:
        """True une fois le délai d'affichage écoulé après la réussite"""
        return (
            self.status == BlinkStatus.COMPLETED
            and now - self.completed_at >= self.settle_ms
        )
