"""
Application principale FastAPI
"""
from fastapi import FastAPI, Request
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import os

from scrutin.config import settings
from scrutin.database import init_db
from scrutin.routers import auth, elections, session
from scrutin.services.voting_session_service import voting_session_service

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie de l'application"""
    # Startup
    await init_db()
    logger.info("Base de données initialisée")
    yield
    # Shutdown
    voting_session_service.clear()
    logger.info("Arrêt de l'application")


# Créer l'application FastAPI
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
    Scrutin électronique protégé par la biométrie faciale

    Chaque bulletin exige, dans la même session:
    - une vérification faciale contre le gabarit enrôlé
    - une preuve de vivacité par clignements des yeux
    """,
    lifespan=lifespan
)

# Configuration CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # En production, spécifier les origines autorisées
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Photos de référence enregistrées à l'enrôlement
app.mount(
    settings.PUBLIC_UPLOAD_PREFIX,
    StaticFiles(directory=settings.UPLOAD_DIR),
    name="uploads"
)

# Interface statique optionnelle
static_path = os.path.join(os.path.dirname(__file__), "..", "static")
if os.path.exists(static_path):
    app.mount("/static", StaticFiles(directory=static_path), name="static")

# Inclure les routers
app.include_router(auth.router, prefix="/api")
app.include_router(elections.router, prefix="/api")
app.include_router(session.router, prefix="/api")


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    """Erreur inattendue: journalisée, message générique pour le client"""
    logger.exception(f"Erreur inattendue sur {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Une erreur inattendue est survenue"}
    )


@app.get("/")
async def root():
    """Page d'accueil"""
    return {
        "message": "Bienvenue sur le système de vote biométrique",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/health")
async def health_check():
    """Vérification de santé"""
    return {"status": "healthy", "version": settings.APP_VERSION}
