import math

import numpy as np
import pytest

from scrutin.services.errors import EmbeddingShapeError
from scrutin.services.signals import (
    average_eye_aspect_ratio, embedding_distance, eye_aspect_ratio, mean_embedding
)
from tests.conftest import CLOSED_EYE, OPEN_EYE


def test_eye_aspect_ratio_open_and_closed():
    assert eye_aspect_ratio(OPEN_EYE) == pytest.approx(0.3)
    assert eye_aspect_ratio(CLOSED_EYE) == pytest.approx(0.1)


def test_average_ear_of_both_eyes():
    assert average_eye_aspect_ratio(OPEN_EYE, CLOSED_EYE) == pytest.approx(0.2)


def test_zero_width_eye_gives_nan():
    flat = [(1, 0), (1, -1), (1, -1), (1, 0), (1, 1), (1, 1)]
    assert math.isnan(eye_aspect_ratio(flat))


def test_wrong_number_of_points_rejected():
    with pytest.raises(ValueError):
        eye_aspect_ratio(OPEN_EYE[:5])


def test_embedding_distance():
    assert embedding_distance([0, 0, 0], [3, 4, 0]) == pytest.approx(5.0)
    assert embedding_distance(np.ones(128), np.ones(128)) == 0.0


def test_embedding_distance_shape_mismatch():
    with pytest.raises(EmbeddingShapeError):
        embedding_distance(np.zeros(128), np.zeros(64))


def test_mean_embedding():
    mean = mean_embedding([[0, 2], [2, 4], [4, 6]])
    assert mean.tolist() == [2.0, 4.0]


def test_mean_embedding_requires_vectors():
    with pytest.raises(ValueError):
        mean_embedding([])


def test_ear_is_scale_invariant():
    scaled = [(3 * x + 7, 3 * y - 2) for x, y in OPEN_EYE]
    assert eye_aspect_ratio(scaled) == pytest.approx(eye_aspect_ratio(OPEN_EYE))


def test_embedding_distance_is_symmetric():
    a = np.linspace(0, 1, 128)
    b = np.linspace(1, 0, 128)
    assert embedding_distance(a, b) == pytest.approx(embedding_distance(b, a))
