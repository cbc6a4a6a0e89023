"""
Exceptions du domaine (vote biométrique)
Les routeurs les traduisent en HTTPException.
"""


class ScrutinError(Exception):
    """Erreur de base du domaine"""

    message = "Erreur interne"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class PreconditionError(ScrutinError):
    """L'étape ne peut pas démarrer: retour à une étape sûre"""
    message = "Condition préalable non remplie"


class MissingReferenceError(PreconditionError):
    message = "Aucune donnée faciale trouvée. Veuillez d'abord enregistrer votre visage."


class CameraUnavailableError(PreconditionError):
    message = "Accès à la caméra refusé ou impossible"


class ModelLoadError(PreconditionError):
    message = "Impossible de charger les modèles de détection faciale"


class EnrollmentIncompleteError(PreconditionError):
    message = "Toutes les poses doivent être capturées avant l'enrôlement"


class CaptureError(ScrutinError):
    """Aucun visage pour une pose: la pose doit être recapturée"""

    def __init__(self, pose: str, message: str = None):
        super().__init__(message or f"Aucun visage détecté pour la pose '{pose}'. Veuillez recommencer.")
        self.pose = pose


class EmbeddingShapeError(ValueError):
    """Vecteurs d'embedding de tailles incompatibles"""
    pass


class InvalidFrameError(ScrutinError):
    message = "Image illisible"


class InvalidTransitionError(ScrutinError):
    """Événement non autorisé dans l'étape courante"""

    def __init__(self, step, event):
        action = event if isinstance(event, str) else type(event).__name__
        super().__init__(f"Action '{action}' impossible à l'étape '{step.value}'")
        self.step = step
        self.event = event


class CameraBusyError(ScrutinError):
    message = "La caméra est déjà utilisée par une autre session"


class DuplicateVoteError(ScrutinError):
    """Violation de l'unicité (électeur, élection): ne jamais réessayer"""
    message = "Vous avez déjà voté pour cette élection"


class ElectionClosedError(ScrutinError):
    message = "Cette élection n'est pas ouverte au vote"


class UnknownElectionError(ScrutinError):
    message = "Élection introuvable"


class UnknownOptionError(ScrutinError):
    message = "Option de vote inconnue"
