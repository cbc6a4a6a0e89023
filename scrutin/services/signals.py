"""
Signaux biométriques: ratio d'ouverture de l'œil (EAR) et distance entre embeddings
Fonctions pures, sans effet de bord.
"""
from typing import Sequence

import numpy as np

from scrutin.services.errors import EmbeddingShapeError


def _as_points(eye_points) -> np.ndarray:
    points = np.asarray(eye_points, dtype=np.float64)
    if points.shape != (6, 2):
        raise ValueError(f"6 points 2D attendus pour un œil, reçu {points.shape}")
    return points


def eye_aspect_ratio(eye_points) -> float:
    """
    Calculer l'EAR d'un œil
    EAR = (||p1-p5|| + ||p2-p4||) / (2 * ||p0-p3||)

    Args:
        eye_points: 6 points ordonnés (coin externe, deux points de la paupière
            supérieure, coin interne, deux points de la paupière inférieure)
    Returns:
        Le ratio, ou NaN si la largeur de l'œil est nulle
    """
    p = _as_points(eye_points)

    # Distances verticales
    a = np.linalg.norm(p[1] - p[5])
    b = np.linalg.norm(p[2] - p[4])
    # Distance horizontale
    c = np.linalg.norm(p[0] - p[3])

    if c == 0:
        return float("nan")
    return float((a + b) / (2.0 * c))


def average_eye_aspect_ratio(left_eye, right_eye) -> float:
    """EAR moyen des deux yeux"""
    return (eye_aspect_ratio(left_eye) + eye_aspect_ratio(right_eye)) / 2.0


def embedding_distance(a, b) -> float:
    """Distance euclidienne entre deux embeddings de même taille"""
    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()
    if va.shape != vb.shape:
        raise EmbeddingShapeError(f"Tailles d'embedding différentes: {va.size} != {vb.size}")
    return float(np.linalg.norm(va - vb))


def mean_embedding(vectors: Sequence) -> np.ndarray:
    """Moyenne composante par composante de plusieurs embeddings"""
    if not vectors:
        raise ValueError("Aucun embedding à moyenner")
    arrays = [np.asarray(v, dtype=np.float64).ravel() for v in vectors]
    size = arrays[0].size
    if any(arr.size != size for arr in arrays):
        raise EmbeddingShapeError("Tous les embeddings doivent avoir la même taille")
    return np.mean(np.stack(arrays), axis=0)
