"""
Agrégation de l'enrôlement: une capture par pose guidée, réduite à un gabarit unique
"""
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from scrutin.config import settings
from scrutin.services.errors import CaptureError, EmbeddingShapeError, EnrollmentIncompleteError
from scrutin.services.signals import mean_embedding


class EnrollmentAggregator:
    """Captures {embedding, pose} éphémères jusqu'à la réduction"""

    def __init__(self, poses: Sequence[str] = ("frontal", "left", "right"), embedding_size: Optional[int] = None):
        self.poses = list(poses)
        self.embedding_size = embedding_size
        self._captures: Dict[str, Tuple[np.ndarray, Optional[np.ndarray]]] = {}

    @classmethod
    def from_settings(cls) -> "EnrollmentAggregator":
        return cls(poses=settings.ENROLLMENT_POSES, embedding_size=settings.EMBEDDING_SIZE)

    def reset(self):
        self._captures.clear()

    @property
    def captured_poses(self) -> List[str]:
        return [pose for pose in self.poses if pose in self._captures]

    @property
    def missing_poses(self) -> List[str]:
        return [pose for pose in self.poses if pose not in self._captures]

    @property
    def is_complete(self) -> bool:
        return not self.missing_poses

    def capture(self, pose: str, embedding, image: Optional[np.ndarray] = None):
        """
        Enregistrer la capture d'une pose (remplace une capture précédente)
        Args:
            pose: libellé de la pose guidée
            embedding: vecteur du visage, None si aucun visage détecté
            image: image RGB de la capture (optionnelle)
        """
        if pose not in self.poses:
            raise ValueError(f"Pose inconnue: {pose}")
        if embedding is None:
            raise CaptureError(pose)

        vector = np.asarray(embedding, dtype=np.float64).ravel()
        if self.embedding_size is not None and vector.size != self.embedding_size:
            raise EmbeddingShapeError(
                f"Embedding de taille {vector.size}, {self.embedding_size} attendu"
            )
        for other, _ in self._captures.values():
            if other.size != vector.size:
                raise EmbeddingShapeError("Toutes les captures doivent avoir la même taille")

        self._captures[pose] = (vector, image)

    def reduce(self) -> np.ndarray:
        """Gabarit de référence: moyenne composante par composante des N captures"""
        if not self.is_complete:
            raise EnrollmentIncompleteError()
        return mean_embedding([self._captures[pose][0] for pose in self.poses])

    def representative_image(self) -> Optional[np.ndarray]:
        """Image de la première pose (frontale)"""
        for pose in self.poses:
            if pose in self._captures and self._captures[pose][1] is not None:
                return self._captures[pose][1]
        return None
