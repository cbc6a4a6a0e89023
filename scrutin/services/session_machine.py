"""
Machine à états de la session de vote
auth -> enroll -> verify -> liveness -> vote -> done

Ordre total strict, sans raccourci: un bulletin n'est accepté qu'après une
vérification faciale ET une preuve de vivacité réussies dans la même session.
transition() est une fonction pure: (état, événement) -> (nouvel état, effets).
"""
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple
import enum

from scrutin.models.audit_log import AuditAction
from scrutin.services.errors import InvalidTransitionError


class Step(str, enum.Enum):
    """Étapes de la session"""
    AUTH = "auth"
    ENROLL = "enroll"
    VERIFY = "verify"
    LIVENESS = "liveness"
    VOTE = "vote"
    DONE = "done"


@dataclass(frozen=True)
class SessionState:
    step: Step = Step.AUTH
    face_verified: bool = False
    liveness_verified: bool = False

    @property
    def may_vote(self) -> bool:
        return self.step == Step.VOTE and self.face_verified and self.liveness_verified


# ==================== ÉVÉNEMENTS ====================

@dataclass(frozen=True)
class Authenticated:
    has_template: bool
    is_verified: bool


@dataclass(frozen=True)
class EnrollmentCompleted:
    captures: int


@dataclass(frozen=True)
class VerifySucceeded:
    distance: float
    threshold: float
    attempts: int


@dataclass(frozen=True)
class VerifyFailed:
    reason: str
    attempts: int
    threshold: float


@dataclass(frozen=True)
class LivenessPassed:
    blinks: int


@dataclass(frozen=True)
class LivenessFailed:
    blinks: int
    reason: str = "timeout"


@dataclass(frozen=True)
class VoteCast:
    election_id: int
    election_title: str
    option: str


@dataclass(frozen=True)
class VoteAgain:
    pass


@dataclass(frozen=True)
class Cancel:
    pass


@dataclass(frozen=True)
class StepAborted:
    """Condition préalable non remplie (pas de gabarit, caméra, modèles)"""
    reason: str


@dataclass(frozen=True)
class SignedOut:
    pass


# ==================== EFFETS ====================

@dataclass(frozen=True)
class ReleaseCamera:
    pass


@dataclass(frozen=True)
class ResetStep:
    step: Step


@dataclass(frozen=True)
class Notify:
    level: str  # "success" | "error" | "info"
    message: str


@dataclass(frozen=True)
class RecordAudit:
    action: AuditAction
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Transition:
    state: SessionState
    effects: Tuple[Any, ...] = ()


# Annulation: retour à l'étape précédente
_CANCEL_TARGET = {
    Step.ENROLL: Step.AUTH,
    Step.VERIFY: Step.ENROLL,
    Step.LIVENESS: Step.VERIFY,
    Step.VOTE: Step.LIVENESS,
}

# Échec de condition préalable: retour à une étape sûre (jamais vote/done)
_ABORT_TARGET = {
    Step.ENROLL: Step.ENROLL,
    Step.VERIFY: Step.ENROLL,
    Step.LIVENESS: Step.VERIFY,
    Step.VOTE: Step.VERIFY,
}


def _enter(state: SessionState, step: Step) -> SessionState:
    """Entrer dans une étape en effaçant les preuves qui ne la précèdent pas"""
    face = state.face_verified and step in (Step.LIVENESS, Step.VOTE, Step.DONE)
    liveness = state.liveness_verified and step in (Step.VOTE, Step.DONE)
    return replace(state, step=step, face_verified=face, liveness_verified=liveness)


def _decide(state: SessionState, event) -> Optional[Tuple[SessionState, list]]:
    step = state.step

    if isinstance(event, SignedOut):
        return SessionState(), []

    if isinstance(event, Authenticated) and step == Step.AUTH:
        if event.has_template and event.is_verified:
            return _enter(state, Step.VERIFY), []
        return _enter(state, Step.ENROLL), []

    if isinstance(event, EnrollmentCompleted) and step == Step.ENROLL:
        return _enter(state, Step.VERIFY), [
            RecordAudit(AuditAction.FACE_REGISTERED, {"success": True, "captures": event.captures}),
            Notify("success", "Visage enregistré avec succès"),
        ]

    if isinstance(event, VerifySucceeded) and step == Step.VERIFY:
        verified = replace(state, face_verified=True)
        return _enter(verified, Step.LIVENESS), [
            RecordAudit(AuditAction.FACE_VERIFICATION_SUCCESS, {
                "distance": round(event.distance, 4),
                "threshold": event.threshold,
                "attempts": event.attempts,
            }),
            Notify("success", "Visage vérifié avec succès"),
        ]

    if isinstance(event, VerifyFailed) and step == Step.VERIFY:
        return replace(state, face_verified=False), [
            ReleaseCamera(),
            RecordAudit(AuditAction.FACE_VERIFICATION_FAILED, {
                "reason": event.reason,
                "attempts": event.attempts,
                "threshold": event.threshold,
            }),
            Notify("error", "La vérification faciale a échoué. Veuillez réessayer."),
        ]

    if isinstance(event, LivenessPassed) and step == Step.LIVENESS and state.face_verified:
        passed = replace(state, liveness_verified=True)
        return _enter(passed, Step.VOTE), [
            RecordAudit(AuditAction.BLINK_VERIFICATION_SUCCESS, {"blinks": event.blinks}),
            Notify("success", "Vérification par clignement réussie"),
        ]

    if isinstance(event, LivenessFailed) and step == Step.LIVENESS:
        return replace(state, liveness_verified=False), [
            ReleaseCamera(),
            RecordAudit(AuditAction.BLINK_VERIFICATION_FAILED, {
                "blinks": event.blinks,
                "reason": event.reason,
            }),
            Notify("error", "Délai de clignement dépassé. Veuillez réessayer."),
        ]

    if isinstance(event, VoteCast) and state.may_vote:
        return _enter(state, Step.DONE), [
            RecordAudit(AuditAction.VOTE_SUBMITTED, {
                "election_id": event.election_id,
                "election_title": event.election_title,
                "selected_option": event.option,
            }),
            Notify("success", "Vote enregistré avec succès"),
        ]

    if isinstance(event, VoteAgain) and step == Step.DONE:
        return _enter(state, Step.VERIFY), []

    if isinstance(event, Cancel) and step in _CANCEL_TARGET:
        return _enter(state, _CANCEL_TARGET[step]), [ReleaseCamera(), ResetStep(step)]

    if isinstance(event, StepAborted) and step in _ABORT_TARGET:
        return _enter(state, _ABORT_TARGET[step]), [
            ReleaseCamera(),
            ResetStep(step),
            Notify("error", event.reason),
        ]

    return None


def transition(state: SessionState, event) -> Transition:
    """
    Appliquer un événement
    Lève InvalidTransitionError si l'événement n'est pas permis à cette étape.
    """
    decided = _decide(state, event)
    if decided is None:
        raise InvalidTransitionError(state.step, event)

    new_state, effects = decided
    # Sortie d'étape: caméra libérée et détecteur de l'étape remis à zéro
    if new_state.step != state.step:
        if not any(isinstance(e, ReleaseCamera) for e in effects):
            effects.insert(0, ReleaseCamera())
        if not any(isinstance(e, ResetStep) for e in effects):
            effects.insert(1, ResetStep(state.step))

    return Transition(state=new_state, effects=tuple(effects))
