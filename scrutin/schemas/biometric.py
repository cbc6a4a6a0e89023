"""
Schémas Pydantic pour la session biométrique
"""
from pydantic import BaseModel
from typing import List, Optional


class FrameRequest(BaseModel):
    """Image de la caméra en base64 (ou data URL)"""
    image_base64: str


class EnrollCaptureRequest(BaseModel):
    """Capture d'une pose guidée"""
    pose: str
    image_base64: str


class NoticeResponse(BaseModel):
    """Message à afficher à l'utilisateur"""
    level: str
    message: str


class EnrollmentStatus(BaseModel):
    poses: List[str]
    captured: List[str]
    missing: List[str]


class VerificationStatus(BaseModel):
    status: str
    attempts: int
    max_attempts: int
    threshold: float
    distance: Optional[float] = None
    reason: Optional[str] = None


class LivenessStatus(BaseModel):
    status: str
    blink_count: int
    required_blinks: int
    eye_closed: bool
    remaining_ms: Optional[int] = None


class SessionResponse(BaseModel):
    """Position dans le parcours et état des détecteurs"""
    step: str
    face_verified: bool
    liveness_verified: bool
    enrollment: EnrollmentStatus
    verification: VerificationStatus
    liveness: LivenessStatus
    notice: Optional[NoticeResponse] = None
    camera_in_use: bool = False


class FrameResponse(BaseModel):
    """Résultat d'un tick"""
    skipped: bool
    face_found: bool
    settle_ms: Optional[int] = None
    session: SessionResponse
