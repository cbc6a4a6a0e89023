"""
Résultat de détection d'une image (non persisté)
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from scrutin.services.signals import average_eye_aspect_ratio


@dataclass
class Detection:
    """Présence, yeux (6 points chacun), embedding optionnel"""
    face_found: bool
    box: Optional[Tuple[int, int, int, int]] = None  # (top, right, bottom, left)
    left_eye: Optional[List[Tuple[float, float]]] = None
    right_eye: Optional[List[Tuple[float, float]]] = None
    embedding: Optional[np.ndarray] = None

    def average_ear(self) -> float:
        return average_eye_aspect_ratio(self.left_eye, self.right_eye)
