"""
Taxonomie des erreurs du checkout.
- FormValidationError: locale, bloque la soumission (n'atteint jamais le serveur).
- TransportError: échec réseau/serveur sur un appel Commerce API ou panier.
- SessionExpiredError: 401 du serveur, signalée hors bande (hook session perdue).
- GatewayError: la passerelle de paiement a signalé un échec (ou n'a pas pu être chargée).
- VerificationError: paiement accepté par la passerelle mais non corroboré par le serveur.
- InvalidCartError: le panier partagé contient des lignes inutilisables.
- CheckoutInProgressError / InvalidTransitionError: violations de la machine à états.
"""
from typing import Dict, Optional


class CheckoutError(Exception):
    """Base des erreurs du checkout."""


class FormValidationError(CheckoutError):
    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        fields = ", ".join(sorted(errors)) or "formulaire"
        super().__init__(f"Invalid shipping details: {fields}")


class TransportError(CheckoutError):
    """
    Échec d'un appel HTTP.
    - status_code: code HTTP (None si échec réseau)
    - server_message: message brut renvoyé par le serveur, utilisé comme texte de repli
    """

    def __init__(self, message: str, status_code: Optional[int] = None, server_message: Optional[str] = None):
        self.status_code = status_code
        self.server_message = server_message
        super().__init__(message)

    @property
    def display_message(self) -> str:
        return self.server_message or str(self)


class SessionExpiredError(TransportError):
    pass


class GatewayError(CheckoutError):
    pass


class VerificationError(CheckoutError):
    pass


class CheckoutInProgressError(CheckoutError):
    pass


class InvalidTransitionError(CheckoutError):
    pass


class InvalidCartError(CheckoutError):
    """Le panier contient des lignes inutilisables (sku vide, quantité <= 0, prix négatif)."""

    def __init__(self, sku_codes):
        self.sku_codes = list(sku_codes)
        listed = ", ".join(s or "?" for s in self.sku_codes)
        super().__init__(f"Your cart contains invalid items: {listed}")
