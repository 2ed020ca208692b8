"""
Module 'checkout' (feature-first): point d'entrée public.
Réunit modèles, calculs de prix, clients HTTP (Commerce API, panier), passerelle et orchestrateur.
"""

from .errors import (
    CheckoutError,
    CheckoutInProgressError,
    FormValidationError,
    GatewayError,
    InvalidCartError,
    InvalidTransitionError,
    SessionExpiredError,
    TransportError,
    VerificationError,
)
from .models import (
    CheckoutItem,
    CheckoutMode,
    CheckoutOutcome,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutState,
    ItemError,
    ItemErrorReason,
    PaymentDismissed,
    PaymentFailed,
    PaymentSucceeded,
    ShippingAddress,
    VerificationResult,
)
from .pricing import order_summary, to_minor_units
from .client import BearerAuth, CommerceApiClient
from .cart import CartPort, HttpCart
from .gateway import PaymentGateway, PendingPayment, load_library
from .service import CheckoutSession, EmptyCartError, classify_failure
from .sessions import CheckoutSessionStore

__all__ = [
    # errors
    "CheckoutError",
    "CheckoutInProgressError",
    "FormValidationError",
    "GatewayError",
    "InvalidCartError",
    "InvalidTransitionError",
    "SessionExpiredError",
    "TransportError",
    "VerificationError",
    # models
    "CheckoutItem",
    "CheckoutMode",
    "CheckoutOutcome",
    "CheckoutRequest",
    "CheckoutResponse",
    "CheckoutState",
    "ItemError",
    "ItemErrorReason",
    "PaymentDismissed",
    "PaymentFailed",
    "PaymentSucceeded",
    "ShippingAddress",
    "VerificationResult",
    # pricing
    "order_summary",
    "to_minor_units",
    # ports
    "BearerAuth",
    "CommerceApiClient",
    "CartPort",
    "HttpCart",
    "PaymentGateway",
    "PendingPayment",
    "load_library",
    # orchestration
    "CheckoutSession",
    "EmptyCartError",
    "classify_failure",
    "CheckoutSessionStore",
]
