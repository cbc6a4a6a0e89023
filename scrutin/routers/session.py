"""
Routes du parcours de vote biométrique
auth -> enroll -> verify -> liveness -> vote -> done
"""
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from scrutin.config import settings
from scrutin.database import get_db
from scrutin.models.user import User
from scrutin.routers.auth import get_current_user
from scrutin.schemas.biometric import (
    EnrollCaptureRequest, EnrollmentStatus, FrameRequest, FrameResponse,
    LivenessStatus, NoticeResponse, SessionResponse, VerificationStatus
)
from scrutin.schemas.election import VoteRequest, VoteResponse
from scrutin.services.blink_service import BlinkStatus
from scrutin.services.errors import (
    CameraBusyError, CaptureError, DuplicateVoteError, ElectionClosedError,
    EmbeddingShapeError, InvalidFrameError, InvalidTransitionError,
    PreconditionError, UnknownElectionError, UnknownOptionError
)
from scrutin.services.voting_session_service import (
    RequestContext, VoterSession, VotingSessionService, get_voting_session_service
)

router = APIRouter(prefix="/session", tags=["Session de vote"])


@asynccontextmanager
async def step_errors():
    """Traduire les erreurs du domaine en réponses HTTP"""
    try:
        yield
    except (PreconditionError, InvalidTransitionError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except DuplicateVoteError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "already_voted", "message": e.message},
        )
    except CaptureError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "no_face", "pose": e.pose, "message": e.message},
        )
    except CameraBusyError as e:
        raise HTTPException(status_code=status.HTTP_423_LOCKED, detail=e.message)
    except UnknownElectionError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except (InvalidFrameError, ElectionClosedError, UnknownOptionError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except (ValueError, EmbeddingShapeError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def build_session_response(service: VotingSessionService, session: VoterSession) -> SessionResponse:
    """Instantané de la session pour l'interface"""
    matcher = session.matcher
    blink = session.blink
    remaining = None
    if blink.status == BlinkStatus.DETECTING and blink.deadline is not None:
        remaining = max(0, int(blink.deadline - service.now_ms()))

    return SessionResponse(
        step=session.state.step.value,
        face_verified=session.state.face_verified,
        liveness_verified=session.state.liveness_verified,
        enrollment=EnrollmentStatus(
            poses=session.enrollment.poses,
            captured=session.enrollment.captured_poses,
            missing=session.enrollment.missing_poses,
        ),
        verification=VerificationStatus(
            status=matcher.status.value,
            attempts=matcher.attempts,
            max_attempts=matcher.max_attempts,
            threshold=matcher.threshold,
            distance=matcher.last_distance,
            reason=matcher.reason,
        ),
        liveness=LivenessStatus(
            status=blink.status.value,
            blink_count=blink.blink_count,
            required_blinks=blink.required_blinks,
            eye_closed=blink.eye_closed,
            remaining_ms=remaining,
        ),
        notice=NoticeResponse(level=session.notice.level, message=session.notice.message) if session.notice else None,
        camera_in_use=session.live_task is not None,
    )


@router.post("/start", response_model=SessionResponse)
async def start_session(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: VotingSessionService = Depends(get_voting_session_service),
):
    """Démarrer le parcours: enrôlement si aucun gabarit, sinon vérification"""
    session = await service.begin(db, current_user.id)
    return build_session_response(service, session)


@router.get("", response_model=SessionResponse)
async def get_session(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: VotingSessionService = Depends(get_voting_session_service),
):
    """État courant de la session"""
    session = await service.snapshot(db, current_user.id)
    return build_session_response(service, session)


@router.post("/enroll/capture", response_model=SessionResponse)
async def enroll_capture(
    data: EnrollCaptureRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: VotingSessionService = Depends(get_voting_session_service),
):
    """Capturer une pose (frontal, left, right)"""
    async with step_errors():
        session = await service.enroll_capture(db, current_user.id, data.pose, data.image_base64)
    return build_session_response(service, session)


@router.post("/verify/start", response_model=SessionResponse)
async def start_verification(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: VotingSessionService = Depends(get_voting_session_service),
):
    """Démarrer (ou relancer) la vérification faciale"""
    async with step_errors():
        await service.start_verification(db, current_user.id)
    return build_session_response(service, service.get_session(current_user.id))


@router.post("/verify/frame", response_model=FrameResponse)
async def verification_frame(
    data: FrameRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: VotingSessionService = Depends(get_voting_session_service),
):
    """Un tick de vérification faciale"""
    async with step_errors():
        result = await service.verification_frame(
            db, current_user.id, data.image_base64, request_context(request)
        )
    return FrameResponse(
        skipped=result.skipped,
        face_found=result.face_found,
        session=build_session_response(service, service.get_session(current_user.id)),
    )


@router.post("/verify/live", response_model=SessionResponse)
async def verify_live(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: VotingSessionService = Depends(get_voting_session_service),
):
    """Vérification faciale complète sur la caméra de la borne"""
    async with step_errors():
        await service.verify_live(db, current_user.id, request_context(request))
    return build_session_response(service, service.get_session(current_user.id))


@router.post("/liveness/start", response_model=SessionResponse)
async def start_liveness(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: VotingSessionService = Depends(get_voting_session_service),
):
    """Démarrer (ou relancer) le comptage de clignements"""
    async with step_errors():
        await service.start_liveness(db, current_user.id)
    return build_session_response(service, service.get_session(current_user.id))


@router.post("/liveness/frame", response_model=FrameResponse)
async def liveness_frame(
    data: FrameRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: VotingSessionService = Depends(get_voting_session_service),
):
    """Un tick de détection de clignement"""
    async with step_errors():
        result = await service.liveness_frame(
            db, current_user.id, data.image_base64, request_context(request)
        )
    session = service.get_session(current_user.id)
    # L'interface garde le compte final affiché avant d'afficher le vote
    settle = settings.BLINK_SETTLE_MS if session.state.liveness_verified and result.transition else None
    return FrameResponse(
        skipped=result.skipped,
        face_found=result.face_found,
        settle_ms=settle,
        session=build_session_response(service, session),
    )


@router.post("/liveness/live", response_model=SessionResponse)
async def liveness_live(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: VotingSessionService = Depends(get_voting_session_service),
):
    """Preuve de vivacité complète sur la caméra de la borne"""
    async with step_errors():
        await service.liveness_live(db, current_user.id, request_context(request))
    return build_session_response(service, service.get_session(current_user.id))


@router.post("/cancel", response_model=SessionResponse)
async def cancel_step(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: VotingSessionService = Depends(get_voting_session_service),
):
    """Annuler l'étape courante (retour à l'étape précédente)"""
    async with step_errors():
        session = await service.cancel(db, current_user.id)
    return build_session_response(service, session)


@router.post("/vote", response_model=VoteResponse)
async def cast_vote(
    data: VoteRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: VotingSessionService = Depends(get_voting_session_service),
):
    """Déposer un bulletin"""
    async with step_errors():
        vote = await service.cast_vote(
            db, current_user.id, data.election_id, data.option_id, request_context(request)
        )
    return VoteResponse(
        vote_id=vote.id,
        election_id=vote.election_id,
        selected_option=vote.selected_option,
        face_verified=vote.face_verified,
        blink_verified=vote.blink_verified,
        created_at=vote.created_at,
        session=build_session_response(service, service.get_session(current_user.id)),
    )


@router.post("/again", response_model=SessionResponse)
async def vote_again(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: VotingSessionService = Depends(get_voting_session_service),
):
    """Voter pour une autre élection: retour à la vérification faciale"""
    async with step_errors():
        session = await service.vote_again(db, current_user.id)
    return build_session_response(service, session)


@router.post("/sign-out")
async def sign_out(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: VotingSessionService = Depends(get_voting_session_service),
):
    """Fermer la session biométrique"""
    await service.sign_out(db, current_user.id)
    return {"success": True, "message": "Session fermée"}
