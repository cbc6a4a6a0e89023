"""
Caméra locale (borne de vote): ressource exclusive, acquise de façon scopée
"""
from contextlib import asynccontextmanager
from typing import Callable, Optional
import asyncio
import logging

import cv2
import numpy as np

from scrutin.config import settings
from scrutin.services.errors import CameraBusyError, CameraUnavailableError

logger = logging.getLogger(__name__)


class CameraStream:
    """Flux ouvert sur le périphérique; lecture d'images RGB"""

    def __init__(self, capture):
        self._capture = capture

    async def read(self) -> Optional[np.ndarray]:
        """Lire une image (None si la lecture échoue)"""
        ok, frame = await asyncio.to_thread(self._capture.read)
        if not ok or frame is None:
            return None
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def release(self):
        self._capture.release()


class Camera:
    """
    Au plus une session de capture détient la caméra.
    Une acquisition concurrente échoue immédiatement (CameraBusyError).
    """

    def __init__(self, index: int = 0, opener: Callable = cv2.VideoCapture):
        self.index = index
        self._opener = opener
        self._held = False

    @property
    def in_use(self) -> bool:
        return self._held

    @asynccontextmanager
    async def acquire(self, width: int = 640, height: int = 480):
        """Ouvrir la caméra; libération garantie en sortie (succès, échec, annulation)"""
        if self._held:
            raise CameraBusyError()
        self._held = True
        capture = None
        try:
            capture = await asyncio.to_thread(self._opener, self.index)
            if capture is None or not capture.isOpened():
                raise CameraUnavailableError()
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
            logger.info(f"Caméra {self.index} acquise ({width}x{height})")
            yield CameraStream(capture)
        finally:
            if capture is not None:
                capture.release()
                logger.info(f"Caméra {self.index} libérée")
            self._held = False


# Instance globale
camera = Camera(settings.CAMERA_INDEX)
