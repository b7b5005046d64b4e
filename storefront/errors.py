"""
Exceptions métier du checkout.
Chaque erreur porte un message affichable, un code stable (pour le front) et le
statut HTTP utilisé par le gestionnaire d'exceptions de l'application.
"""


class CheckoutError(Exception):
    """Base des erreurs métier du checkout."""
    code = "checkout_error"
    status_code = 400

    def __init__(self, message: str = "Une erreur est survenue pendant le paiement.", code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class CheckoutValidationError(CheckoutError):
    """Champs manquants ou panier vide: résolu localement, aucun appel réseau."""
    code = "validation_error"


class AttemptInProgressError(CheckoutError):
    """Un paiement est déjà en cours pour cette session."""
    code = "attempt_in_progress"
    status_code = 409

    def __init__(self):
        super().__init__("Un paiement est déjà en cours. Veuillez patienter.")


class UnsettledPaymentError(CheckoutError):
    """Un paiement précédent a peut-être été débité sans commande: pas de nouveau paiement."""
    code = "unsettled_payment"
    status_code = 409

    def __init__(self, reference: str | None = None):
        ref = f" (référence {reference})" if reference else ""
        super().__init__(
            "Un paiement précédent est en cours de rapprochement par notre support"
            f"{ref}. Ne payez pas à nouveau."
        )


class GatewayUnavailableError(CheckoutError):
    """La passerelle n'a pas pu ouvrir de session de paiement."""
    code = "gateway_unavailable"
    status_code = 502


class VerificationFailed(CheckoutError):
    """
    Vérification refusée ou impossible.
    - charged=False: le backend confirme l'absence de débit (verified=false)
    - charged=None: état du débit inconnu (backend injoignable, réponse invalide)
    """
    code = "verification_failed"
    status_code = 402

    def __init__(self, message: str, charged: bool | None = None):
        super().__init__(message)
        self.charged = charged


class VerificationTimedOut(CheckoutError):
    """La vérification n'a pas répondu dans le délai imparti."""
    code = "verification_timed_out"
    status_code = 504


class OrderSubmissionError(CheckoutError):
    """Création de commande refusée (retryable=False) ou transport en échec (retryable=True)."""
    code = "order_submission_failed"
    status_code = 502

    def __init__(self, message: str, retryable: bool = False, status: int | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.status = status


class PersistenceCorruption(Exception):
    """Instantané du panier illisible (JSON invalide ou structure inattendue)."""


class IllegalTransition(Exception):
    """Événement non autorisé dans l'état courant de la tentative."""

    def __init__(self, status, event):
        super().__init__(f"{type(event).__name__} interdit depuis {status}")
        self.status = status
        self.event = event


class AttemptNotFoundError(CheckoutError):
    """Aucune tentative de paiement connue pour cette session ou cette référence."""
    code = "attempt_not_found"
    status_code = 404

    def __init__(self, message: str = "Aucun paiement en cours."):
        super().__init__(message)


class NothingToReconcileError(CheckoutError):
    """La tentative n'est pas dans un état à rapprocher."""
    code = "nothing_to_reconcile"
    status_code = 409
