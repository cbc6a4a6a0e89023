"""
Fixtures partagées: base SQLite temporaire, détecteur et caméra simulés
"""
from datetime import datetime, timedelta

import httpx
import numpy as np
import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import scrutin.models  # noqa: F401
from scrutin.config import settings
from scrutin.database import Base, get_db
from scrutin.main import app
from scrutin.models import Election
from scrutin.services.audit_service import audit_service
from scrutin.services.auth_service import create_access_token, create_user
from scrutin.services.camera_service import Camera
from scrutin.services.detection import Detection
from scrutin.services.profile_service import profile_service
from scrutin.services.voting_session_service import VotingSessionService, get_voting_session_service

EMBEDDING = np.full(128, 0.1)
STRANGER = EMBEDDING + 0.2


def eye(height: float):
    """Œil de largeur 4: EAR = height / 2"""
    return [(0, 0), (1, -height), (2, -height), (4, 0), (2, height), (1, height)]


OPEN_EYE = eye(0.6)  # EAR 0.3
CLOSED_EYE = eye(0.2)  # EAR 0.1

LABELS = ["empty", "me", "stranger", "open", "closed"]


class FakeClock:
    """Horloge monotone pilotée par le test (secondes)"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeDetector:
    """
    Une image est un petit tableau dont la valeur code une étiquette.
    Les images poussées sont des étiquettes en clair ("me", "closed", ...).
    """

    def __init__(self):
        self.load_calls = 0
        self.fail_load = None
        self.before_detect = None
        self.in_flight = 0
        self.max_in_flight = 0

    def load(self):
        self.load_calls += 1
        if self.fail_load is not None:
            raise self.fail_load

    def frame(self, label: str) -> np.ndarray:
        return np.full((2, 2, 3), LABELS.index(label), dtype=np.uint8)

    def decode_base64_image(self, image_base64: str):
        if image_base64 not in LABELS:
            return None
        return self.frame(image_base64)

    def encode_jpeg(self, frame, quality: int = 80) -> bytes:
        return b"jpeg"

    def _detect(self, frame, with_embedding: bool):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            return self._read_label(frame, with_embedding)
        finally:
            self.in_flight -= 1

    def _read_label(self, frame, with_embedding: bool):
        if self.before_detect is not None:
            self.before_detect()
        label = LABELS[int(frame[0, 0, 0])]
        if label == "empty":
            return None
        closed = label == "closed"
        return Detection(
            face_found=True,
            box=(0, 10, 10, 0),
            left_eye=CLOSED_EYE if closed else OPEN_EYE,
            right_eye=CLOSED_EYE if closed else OPEN_EYE,
            embedding=(STRANGER if label == "stranger" else EMBEDDING) if with_embedding else None,
        )

    def detect_one(self, frame):
        return self._detect(frame, with_embedding=False)

    def detect_one_with_embedding(self, frame):
        return self._detect(frame, with_embedding=True)


class FakeCapture:
    """Périphérique vidéo: chaque lecture avance l'horloge d'un intervalle"""

    def __init__(self, detector: FakeDetector, clock: FakeClock, labels=("empty",), opened: bool = True, step: float = 0.1):
        self.detector = detector
        self.clock = clock
        self.labels = list(labels)
        self.opened = opened
        self.step = step
        self.reads = 0
        self.released = False

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        return True

    def read(self):
        self.clock.advance(self.step)
        label = self.labels[min(self.reads, len(self.labels) - 1)]
        self.reads += 1
        return True, self.detector.frame(label)

    def release(self):
        self.released = True


@pytest.fixture(autouse=True)
def fast_settle(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "BLINK_SETTLE_MS", 0)
    monkeypatch.setattr(profile_service, "upload_dir", tmp_path / "uploads")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def detector():
    return FakeDetector()


@pytest.fixture
def capture(detector, clock):
    return FakeCapture(detector, clock)


@pytest.fixture
def camera(capture):
    return Camera(index=0, opener=lambda index: capture)


@pytest.fixture
def service(detector, camera, clock):
    return VotingSessionService(detector=detector, camera=camera, clock=clock)


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine, monkeypatch):
    maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(audit_service, "session_maker", maker)
    return maker


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def voter(db):
    return await create_user(db, email="electeur@example.com", password="secret123", full_name="Électeur Test")


@pytest.fixture
async def election(db):
    now = datetime.utcnow()
    election = Election(
        title="General Election 2024",
        description="Élection de test",
        options=[
            {"id": "party1", "name": "Democratic Party"},
            {"id": "party2", "name": "Republican Party"},
        ],
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=30),
        is_active=True,
    )
    db.add(election)
    await db.commit()
    await db.refresh(election)
    return election


@pytest.fixture
def auth_headers(voter):
    token = create_access_token({"sub": str(voter.id), "email": voter.email, "role": voter.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(session_maker, service):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_voting_session_service] = lambda: service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class BrokenSession:
    """Session dont chaque commit échoue (stockage d'audit indisponible)"""

    def __init__(self):
        self.rolled_back = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def add(self, obj):
        pass

    async def commit(self):
        raise OperationalError("INSERT", {}, Exception("disk full"))

    async def rollback(self):
        self.rolled_back = True
