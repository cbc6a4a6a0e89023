"""
Orchestration de la session de vote
Relie la machine à états aux détecteurs (enrôlement, visage, clignements),
à la caméra et aux stockages (profil, vote, audit).

Deux modes d'alimentation en images:
- push: le navigateur envoie une image par tick (*_frame)
- live: la borne lit sa caméra locale via FramePoller (*_live)
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional
import asyncio
import logging
import time

from sqlalchemy.ext.asyncio import AsyncSession

from scrutin.config import settings
from scrutin.services.audit_service import audit_service
from scrutin.services.blink_service import BlinkDetector, BlinkStatus, BlinkUpdate
from scrutin.services.camera_service import Camera, camera as default_camera
from scrutin.services.enrollment_service import EnrollmentAggregator
from scrutin.services.errors import (
    CameraUnavailableError, InvalidFrameError, InvalidTransitionError,
    MissingReferenceError, PreconditionError
)
from scrutin.services.face_service import FaceDetector, face_detector as default_detector
from scrutin.services.frame_poller import FramePoller
from scrutin.services.matching_service import FaceMatcher, MatchOutcome, MatchStatus
from scrutin.services.profile_service import profile_service
from scrutin.services.session_machine import (
    Authenticated, Cancel, EnrollmentCompleted, LivenessFailed, LivenessPassed,
    Notify, RecordAudit, ReleaseCamera, ResetStep, SessionState, SignedOut, Step,
    StepAborted, Transition, VerifyFailed, VerifySucceeded, VoteAgain, VoteCast,
    transition
)
from scrutin.services.vote_service import vote_service

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Contexte client joint aux événements d'audit et aux votes"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class VoterSession:
    """Session d'un électeur authentifié (détenue par le registre)"""
    user_id: int
    state: SessionState = field(default_factory=SessionState)
    enrollment: EnrollmentAggregator = field(default_factory=EnrollmentAggregator.from_settings)
    matcher: FaceMatcher = field(default_factory=FaceMatcher.from_settings)
    blink: BlinkDetector = field(default_factory=BlinkDetector.from_settings)
    # Une seule détection en vol par session
    tick_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    live_task: Optional[asyncio.Task] = None
    live_cancelled: bool = False
    notice: Optional[Notify] = None
    # Incrémenté à chaque transition/redémarrage: invalide les ticks en vol
    generation: int = 0


@dataclass
class FrameResult:
    """Réponse à une image poussée"""
    skipped: bool = False
    face_found: bool = False
    transition: Optional[Transition] = None


class VotingSessionService:
    """Registre des sessions et exécution des effets de transition"""

    def __init__(
        self,
        detector: FaceDetector = None,
        camera: Camera = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.detector = detector or default_detector
        self.camera = camera or default_camera
        self._clock = clock
        self._sessions: Dict[int, VoterSession] = {}

    # ==================== REGISTRE ====================

    def get_session(self, user_id: int) -> VoterSession:
        session = self._sessions.get(user_id)
        if session is None:
            session = VoterSession(user_id=user_id)
            self._sessions[user_id] = session
        return session

    def clear(self):
        self._sessions.clear()

    def now_ms(self) -> float:
        return self._clock() * 1000.0

    # ==================== EFFETS ====================

    async def _release_camera(self, session: VoterSession):
        """Arrêter la capture en cours (la caméra est libérée par son bail)"""
        task = session.live_task
        if task is None or task.done() or task is asyncio.current_task():
            return
        session.live_cancelled = True
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    def _reset_step(self, session: VoterSession, step: Step):
        if step == Step.ENROLL:
            session.enrollment.reset()
        elif step == Step.VERIFY:
            session.matcher.reset()
        elif step == Step.LIVENESS:
            session.blink.reset()

    async def _apply(
        self,
        db: AsyncSession,
        session: VoterSession,
        event,
        context: Optional[RequestContext] = None,
    ) -> Transition:
        """Appliquer un événement et exécuter ses effets"""
        result = transition(session.state, event)
        previous = session.state.step
        session.state = result.state
        session.generation += 1
        session.notice = None
        logger.info(
            f"Session user_id={session.user_id}: {previous.value} -> {result.state.step.value} "
            f"({type(event).__name__})"
        )

        context = context or RequestContext()
        for effect in result.effects:
            if isinstance(effect, ReleaseCamera):
                await self._release_camera(session)
            elif isinstance(effect, ResetStep):
                self._reset_step(session, effect.step)
            elif isinstance(effect, Notify):
                session.notice = effect
            elif isinstance(effect, RecordAudit):
                await audit_service.append(
                    session.user_id,
                    effect.action,
                    effect.details,
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                )
        return result

    async def _abort(self, db: AsyncSession, session: VoterSession, error: PreconditionError):
        """Échec de condition préalable: retour à l'étape sûre puis propagation"""
        await self._apply(db, session, StepAborted(error.message))
        raise error

    def _require_step(self, session: VoterSession, step: Step, action: str):
        if session.state.step != step:
            raise InvalidTransitionError(session.state.step, action)

    def _tick_pending(self, session: VoterSession) -> bool:
        """Une détection est déjà en vol (image poussée ou capture locale)"""
        return session.tick_lock.locked() or session.live_task is not None

    async def _ensure_models(self, db: AsyncSession, session: VoterSession):
        try:
            await asyncio.to_thread(self.detector.load)
        except PreconditionError as e:
            await self._abort(db, session, e)

    def _decode(self, image_base64: str):
        frame = self.detector.decode_base64_image(image_base64)
        if frame is None:
            raise InvalidFrameError()
        return frame

    async def _detect(self, frame, with_embedding: bool):
        """Détection dans un thread; une erreur du détecteur = tick sans visage"""
        detect = (
            self.detector.detect_one_with_embedding if with_embedding
            else self.detector.detect_one
        )
        try:
            return await asyncio.to_thread(detect, frame)
        except PreconditionError:
            raise
        except Exception as e:
            logger.error(f"Erreur de détection (ignorée pour ce tick): {e}")
            return None

    # ==================== AUTH ====================

    async def begin(self, db: AsyncSession, user_id: int) -> VoterSession:
        """Décision d'entrée après authentification: enroll ou verify"""
        session = self.get_session(user_id)
        if session.state.step != Step.AUTH:
            return session

        profile = await profile_service.get_profile(db, user_id)
        await self._apply(db, session, Authenticated(
            has_template=bool(profile and profile.has_template),
            is_verified=bool(profile and profile.is_verified),
        ))
        return session

    # ==================== ENRÔLEMENT ====================

    async def enroll_capture(self, db: AsyncSession, user_id: int, pose: str, image_base64: str) -> VoterSession:
        """
        Capturer une pose guidée; à la dernière pose, calculer et enregistrer le gabarit
        Lève CaptureError si aucun visage n'est détecté (la pose doit être reprise).
        """
        session = self.get_session(user_id)
        self._require_step(session, Step.ENROLL, "enroll_capture")
        frame = self._decode(image_base64)
        await self._ensure_models(db, session)

        detection = await self._detect(frame, with_embedding=True)
        session.enrollment.capture(pose, detection.embedding if detection else None, frame)
        logger.info(
            f"Pose '{pose}' capturée pour user_id={user_id} "
            f"(manquantes: {session.enrollment.missing_poses})"
        )

        if not session.enrollment.is_complete:
            return session

        template = session.enrollment.reduce()
        image_url = None
        image = session.enrollment.representative_image()
        if image is not None:
            stamp = int(datetime.utcnow().timestamp() * 1000)
            image_url = await profile_service.store_image(
                f"{user_id}/{user_id}_face_{stamp}.jpg",
                self.detector.encode_jpeg(image),
            )
        await profile_service.save_template(db, user_id, template, image_url)
        await self._apply(db, session, EnrollmentCompleted(captures=len(session.enrollment.poses)))
        return session

    # ==================== VÉRIFICATION FACIALE ====================

    async def start_verification(self, db: AsyncSession, user_id: int) -> MatchOutcome:
        """Charger le gabarit et démarrer (ou relancer) la vérification"""
        session = self.get_session(user_id)
        self._require_step(session, Step.VERIFY, "start_verification")

        try:
            template = await profile_service.load_template(db, user_id)
        except ValueError as e:
            logger.error(f"Gabarit illisible pour user_id={user_id}: {e}")
            template = None
        if template is None:
            await self._abort(db, session, MissingReferenceError())

        await self._ensure_models(db, session)
        session.matcher.start(template)
        session.generation += 1
        return session.matcher.outcome()

    async def _finish_verification(self, db, session: VoterSession, outcome: MatchOutcome, context=None):
        if outcome.status == MatchStatus.SUCCESS:
            return await self._apply(db, session, VerifySucceeded(
                distance=outcome.distance,
                threshold=outcome.threshold,
                attempts=outcome.attempts,
            ), context)
        if outcome.status == MatchStatus.FAILED:
            return await self._apply(db, session, VerifyFailed(
                reason=outcome.reason,
                attempts=outcome.attempts,
                threshold=outcome.threshold,
            ), context)
        return None

    async def verification_frame(
        self,
        db: AsyncSession,
        user_id: int,
        image_base64: str,
        context: Optional[RequestContext] = None,
    ) -> FrameResult:
        """Un tick de vérification sur une image poussée par le client"""
        session = self.get_session(user_id)
        self._require_step(session, Step.VERIFY, "verification_frame")
        if session.matcher.status != MatchStatus.VERIFYING:
            raise InvalidTransitionError(session.state.step, "verification_frame")
        if self._tick_pending(session):
            return FrameResult(skipped=True)

        async with session.tick_lock:
            generation = session.generation
            frame = self._decode(image_base64)
            detection = await self._detect(frame, with_embedding=True)
            if session.generation != generation:
                return FrameResult(skipped=True)

            outcome = session.matcher.tick(detection)
            result = FrameResult(face_found=detection is not None)
            result.transition = await self._finish_verification(db, session, outcome, context)
            return result

    async def verify_live(self, db: AsyncSession, user_id: int, context: Optional[RequestContext] = None) -> Optional[MatchOutcome]:
        """Vérification complète sur la caméra locale; None si annulée"""
        await self.start_verification(db, user_id)
        session = self.get_session(user_id)

        finished = await self._run_live(
            db,
            session,
            Step.VERIFY,
            with_embedding=True,
            on_tick=lambda detection, now: session.matcher.tick(detection),
            done=lambda: session.matcher.status != MatchStatus.VERIFYING,
        )
        if not finished:
            return None

        outcome = session.matcher.outcome()
        await self._finish_verification(db, session, outcome, context)
        return outcome

    # ==================== CLIGNEMENTS ====================

    async def start_liveness(self, db: AsyncSession, user_id: int) -> BlinkUpdate:
        """Démarrer (ou relancer) le comptage de clignements"""
        session = self.get_session(user_id)
        self._require_step(session, Step.LIVENESS, "start_liveness")
        await self._ensure_models(db, session)
        session.blink.start(self.now_ms())
        session.generation += 1
        return session.blink.skip(self.now_ms())

    def _feed_blink(self, session: VoterSession, detection, now: float) -> BlinkUpdate:
        if detection is None:
            return session.blink.skip(now)
        return session.blink.feed(detection.average_ear(), now)

    async def _finish_liveness(self, db, session: VoterSession, context=None):
        if session.blink.status == BlinkStatus.COMPLETED:
            return await self._apply(db, session, LivenessPassed(blinks=session.blink.blink_count), context)
        if session.blink.status == BlinkStatus.FAILED:
            return await self._apply(db, session, LivenessFailed(blinks=session.blink.blink_count), context)
        return None

    async def liveness_frame(
        self,
        db: AsyncSession,
        user_id: int,
        image_base64: str,
        context: Optional[RequestContext] = None,
    ) -> FrameResult:
        """Un tick de détection de clignement sur une image poussée"""
        session = self.get_session(user_id)
        self._require_step(session, Step.LIVENESS, "liveness_frame")
        if session.blink.status != BlinkStatus.DETECTING:
            raise InvalidTransitionError(session.state.step, "liveness_frame")
        if self._tick_pending(session):
            return FrameResult(skipped=True)

        async with session.tick_lock:
            generation = session.generation
            now = self.now_ms()
            frame = self._decode(image_base64)
            detection = await self._detect(frame, with_embedding=False)
            if session.generation != generation:
                return FrameResult(skipped=True)

            self._feed_blink(session, detection, now)
            result = FrameResult(face_found=detection is not None)
            result.transition = await self._finish_liveness(db, session, context)
            return result

    async def liveness_live(self, db: AsyncSession, user_id: int, context: Optional[RequestContext] = None) -> Optional[BlinkUpdate]:
        """Preuve de vivacité complète sur la caméra locale; None si annulée"""
        await self.start_liveness(db, user_id)
        session = self.get_session(user_id)

        finished = await self._run_live(
            db,
            session,
            Step.LIVENESS,
            with_embedding=False,
            on_tick=lambda detection, now: self._feed_blink(session, detection, now),
            done=lambda: session.blink.status != BlinkStatus.DETECTING,
        )
        if not finished:
            return None

        update = session.blink.skip(self.now_ms())
        if update.status == BlinkStatus.COMPLETED:
            # Laisser l'interface afficher le compte final avant d'avancer
            generation = session.generation
            while not session.blink.settled(self.now_ms()):
                await asyncio.sleep(settings.POLL_INTERVAL_MS / 1000.0)
                if session.generation != generation:
                    return None
        await self._finish_liveness(db, session, context)
        return update

    # ==================== CAPTURE LOCALE ====================

    async def _run_live(self, db, session: VoterSession, step: Step, with_embedding: bool, on_tick, done) -> bool:
        """
        Exécuter la boucle caméra jusqu'à décision
        Returns:
            False si la capture a été annulée par l'utilisateur
        """
        generation = session.generation
        poller = FramePoller(settings.POLL_INTERVAL_MS, clock=self._clock)

        def still_active():
            return (
                session.generation == generation
                and session.state.step == step
                and not done()
            )

        async def detect(frame):
            async with session.tick_lock:
                return await self._detect(frame, with_embedding)

        async def capture():
            async with self.camera.acquire(settings.CAMERA_WIDTH, settings.CAMERA_HEIGHT) as stream:
                await poller.run(
                    stream.read,
                    detect,
                    on_tick,
                    still_active,
                )

        session.live_cancelled = False
        task = asyncio.create_task(capture())
        session.live_task = task
        try:
            await task
        except asyncio.CancelledError:
            if session.live_cancelled:
                return False
            task.cancel()
            raise
        except CameraUnavailableError as e:
            await self._abort(db, session, e)
        finally:
            session.live_task = None

        logger.info(f"Capture terminée: {poller.ticks} ticks, {poller.skipped_ticks} sautés")
        return session.generation == generation and done()

    # ==================== VOTE ====================

    async def cast_vote(
        self,
        db: AsyncSession,
        user_id: int,
        election_id: int,
        option_id: str,
        context: Optional[RequestContext] = None,
    ):
        """
        Déposer un bulletin (uniquement à l'étape vote, preuves acquises)
        Lève DuplicateVoteError si l'électeur a déjà voté pour cette élection.
        """
        session = self.get_session(user_id)
        if not session.state.may_vote:
            raise InvalidTransitionError(session.state.step, "cast_vote")

        context = context or RequestContext()
        vote = await vote_service.insert_vote(
            db,
            user_id,
            election_id,
            option_id,
            face_verified=session.state.face_verified,
            blink_verified=session.state.liveness_verified,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        election = await vote_service.get_election(db, election_id)
        await self._apply(db, session, VoteCast(
            election_id=election_id,
            election_title=election.title,
            option=option_id,
        ), context)
        return vote

    async def vote_again(self, db: AsyncSession, user_id: int) -> VoterSession:
        """Depuis done: retour à la vérification faciale (jamais directement au vote)"""
        session = self.get_session(user_id)
        await self._apply(db, session, VoteAgain())
        return session

    # ==================== ANNULATION ====================

    async def cancel(self, db: AsyncSession, user_id: int) -> VoterSession:
        """Retour à l'étape précédente; capture arrêtée et caméra libérée"""
        session = self.get_session(user_id)
        await self._apply(db, session, Cancel())
        return session

    async def sign_out(self, db: AsyncSession, user_id: int):
        session = self.get_session(user_id)
        await self._apply(db, session, SignedOut())
        self._sessions.pop(user_id, None)

    async def snapshot(self, db: AsyncSession, user_id: int) -> VoterSession:
        """État courant, après application d'un délai de clignement écoulé entre deux images"""
        session = self.get_session(user_id)
        if session.state.step == Step.LIVENESS and session.blink.expire_if_due(self.now_ms()):
            await self._finish_liveness(db, session)
        return session


# Instance globale
voting_session_service = VotingSessionService()


def get_voting_session_service() -> VotingSessionService:
    """Dépendance FastAPI (remplaçable dans les tests)"""
    return voting_session_service
