"""
Boucle d'échantillonnage vidéo à intervalle fixe
Une seule détection en vol: chaque tick attend sa détection avant de planifier
le suivant. Les ticks dont le créneau est dépassé sont sautés, jamais mis en file.
"""
from typing import Awaitable, Callable, Optional
import asyncio
import logging
import time

import numpy as np

from scrutin.services.detection import Detection

logger = logging.getLogger(__name__)


class FramePoller:
    """Boucle coopérative; s'arrête dès que still_active() devient faux"""

    def __init__(
        self,
        interval_ms: float = 100,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.interval_ms = interval_ms
        self._clock = clock
        self._sleep = sleep
        self.ticks = 0
        self.skipped_ticks = 0

    def now_ms(self) -> float:
        return self._clock() * 1000.0

    async def run(
        self,
        read_frame: Callable[[], Awaitable[Optional[np.ndarray]]],
        detect: Callable[[np.ndarray], Awaitable[Optional[Detection]]],
        on_tick: Callable[[Optional[Detection], float], None],
        still_active: Callable[[], bool],
    ) -> int:
        """
        Exécuter la boucle
        Args:
            read_frame: lecture de l'image courante
            detect: détection sur une image (une seule à la fois)
            on_tick: traitement du résultat (detection ou None, instant en ms)
            still_active: l'étape est-elle toujours active ?
        Returns:
            Nombre de ticks traités
        """
        interval = self.interval_ms / 1000.0
        next_tick = self._clock()

        while still_active():
            frame = await read_frame()
            detection = None
            if frame is not None:
                try:
                    detection = await detect(frame)
                except Exception as e:
                    # Erreur du détecteur: tick ignoré, l'étape continue
                    logger.error(f"Erreur de détection: {e}")

            # L'étape a pu être annulée pendant la détection
            if not still_active():
                break

            on_tick(detection, self.now_ms())
            self.ticks += 1

            next_tick += interval
            now = self._clock()
            if now > next_tick:
                missed = int((now - next_tick) // interval) + 1
                self.skipped_ticks += missed
                next_tick += missed * interval
            await self._sleep(next_tick - now)

        return self.ticks
