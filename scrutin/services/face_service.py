"""
Service de détection faciale (capacité externe consommée par le pipeline)
Détection + 68 points de repère + embedding 128-d via face_recognition (dlib)
"""
import numpy as np
import cv2
import base64
import face_recognition
from typing import Optional, Tuple
import logging
import os

from scrutin.services.errors import ModelLoadError
from scrutin.services.detection import Detection

logger = logging.getLogger(__name__)


class FaceDetector:
    """Service pour la détection et l'encodage des visages"""

    def __init__(self, max_width: int = 480):
        """
        Args:
            max_width: Largeur maximale de traitement (les images plus larges sont réduites)
        """
        self.max_width = max_width
        self._loaded = False

    def load(self):
        """
        Charger les modèles de repères et de reconnaissance (une seule fois)
        Lève ModelLoadError si les fichiers de modèles sont absents.
        """
        if self._loaded:
            return
        try:
            import face_recognition_models

            paths = [
                face_recognition_models.pose_predictor_model_location(),
                face_recognition_models.face_recognition_model_location(),
            ]
        except ImportError as e:
            logger.error(f"Paquet face_recognition_models introuvable: {e}")
            raise ModelLoadError()

        missing = [p for p in paths if not os.path.exists(p)]
        if missing:
            logger.error(f"Modèles manquants: {missing}")
            raise ModelLoadError()

        # Préchauffage sur une image vide pour initialiser dlib
        face_recognition.face_locations(np.zeros((48, 48, 3), dtype=np.uint8), model="hog")
        self._loaded = True
        logger.info("Modèles de détection faciale chargés")

    def decode_base64_image(self, image_base64: str) -> Optional[np.ndarray]:
        """
        Décoder une image base64 (ou data URL) en array numpy RGB
        """
        try:
            # Retirer le préfixe data:image si présent
            if ',' in image_base64:
                image_base64 = image_base64.split(',')[1]

            image_data = base64.b64decode(image_base64)
            nparr = np.frombuffer(image_data, np.uint8)
            image = cv2.imdecode(nparr, cv2.IMREAD_COLOR)

            # Convertir BGR (OpenCV) en RGB (face_recognition)
            if image is not None:
                image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

            return image
        except (ValueError, TypeError, cv2.error) as e:
            logger.error(f"Erreur de décodage image: {e}")
            return None

    def encode_jpeg(self, frame: np.ndarray, quality: int = 80) -> bytes:
        """Encoder une image RGB en JPEG (image représentative d'enrôlement)"""
        bgr = cv2.cvtColor(frame, cv2.COLOR_RGB2BGR)
        ok, buffer = cv2.imencode(".jpg", bgr, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
        if not ok:
            raise ValueError("Échec de l'encodage JPEG")
        return buffer.tobytes()

    def _resize_image_for_speed(self, image: np.ndarray) -> Tuple[np.ndarray, float]:
        """
        Redimensionner l'image pour accélérer le traitement
        Returns:
            Tuple (image redimensionnée, facteur de scale)
        """
        height, width = image.shape[:2]
        if width > self.max_width:
            scale = self.max_width / width
            resized = cv2.resize(image, (self.max_width, int(height * scale)))
            return resized, scale
        return image, 1.0

    def _detect(self, frame: np.ndarray, with_embedding: bool) -> Optional[Detection]:
        self.load()
        small, _ = self._resize_image_for_speed(frame)

        # Modèle HOG (plus rapide que CNN)
        locations = face_recognition.face_locations(small, model="hog")
        if not locations:
            return None
        if len(locations) > 1:
            logger.warning(f"Plusieurs visages détectés ({len(locations)}), utilisation du plus grand")

        # Visage principal: la plus grande boîte
        box = max(locations, key=lambda loc: (loc[2] - loc[0]) * (loc[1] - loc[3]))

        landmarks = face_recognition.face_landmarks(small, face_locations=[box])
        if not landmarks:
            return None
        points = landmarks[0]

        embedding = None
        if with_embedding:
            encodings = face_recognition.face_encodings(small, known_face_locations=[box])
            if not encodings:
                return None
            embedding = np.asarray(encodings[0], dtype=np.float64)

        return Detection(
            face_found=True,
            box=tuple(int(v) for v in box),
            left_eye=[tuple(p) for p in points["left_eye"]],
            right_eye=[tuple(p) for p in points["right_eye"]],
            embedding=embedding,
        )

    def detect_one(self, frame: np.ndarray) -> Optional[Detection]:
        """Détecter un visage et ses repères (sans embedding)"""
        return self._detect(frame, with_embedding=False)

    def detect_one_with_embedding(self, frame: np.ndarray) -> Optional[Detection]:
        """Détecter un visage, ses repères et son embedding 128-d"""
        return self._detect(frame, with_embedding=True)


# Instance globale du service
face_detector = FaceDetector()
