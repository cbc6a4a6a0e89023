"""
Script de démarrage de l'application
"""
from datetime import datetime, timedelta
import asyncio
import logging

import uvicorn
from sqlalchemy import select

from scrutin.database import init_db, async_session_maker
from scrutin.models import Election

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("run")

SAMPLE_ELECTION = {
    "title": "General Election 2024",
    "description": "Vote for your preferred political party in the upcoming general election.",
    "options": [
        {"id": "party1", "name": "Democratic Party",
         "description": "Progressive policies for economic equality and social justice"},
        {"id": "party2", "name": "Republican Party",
         "description": "Conservative values with focus on free market and traditional principles"},
        {"id": "party3", "name": "Independent Alliance",
         "description": "Centrist approach focusing on practical solutions and bipartisan cooperation"},
    ],
}


async def create_sample_election():
    """Créer l'élection d'exemple si aucune élection n'existe"""
    async with async_session_maker() as db:
        existing = await db.execute(select(Election).limit(1))
        if existing.scalar_one_or_none() is not None:
            logger.info("Des élections existent déjà")
            return

        now = datetime.utcnow()
        db.add(Election(
            **SAMPLE_ELECTION,
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=30),
            is_active=True,
        ))
        await db.commit()
        logger.info(f"Élection d'exemple créée: {SAMPLE_ELECTION['title']}")


async def main():
    """Initialisation"""
    logger.info("Démarrage de Scrutin Biométrique...")
    await init_db()
    logger.info("Base de données initialisée")
    await create_sample_election()


if __name__ == "__main__":
    # Initialisation
    asyncio.run(main())

    logger.info("Serveur démarré sur http://localhost:8000 (documentation: /docs)")

    uvicorn.run(
        "scrutin.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
