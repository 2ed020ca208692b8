import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse, Response

from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import require_user, clear_session_cookie
from .cart import HttpCart
from .client import BearerAuth, CommerceApiClient
from .gateway import load_library
from .models import CheckoutItem, PaymentDismissed, PaymentFailed, PaymentSucceeded
from .service import CheckoutSession
from .sessions import CheckoutSessionStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout API"])


class CheckoutPorts:
    """
    Collaborateurs d'une session: façade Commerce API, port panier, passerelle.
    Conservés avec la session pour que les callbacks de paiement réutilisent les mêmes clients.
    """

    def __init__(self, api, cart, gateway, auth: Optional[BearerAuth] = None):
        self.api = api
        self.cart = cart
        self.gateway = gateway
        self.auth = auth
        self.session_lost = False

    def refresh(self, token: str) -> None:
        if self.auth is not None:
            self.auth.token = token
        self.session_lost = False

    def mark_session_lost(self) -> None:
        self.session_lost = True


def get_store(request: Request) -> CheckoutSessionStore:
    return request.app.state.checkout_sessions

def get_checkout_ports(request: Request, user: Dict[str, Any] = Depends(require_user)) -> CheckoutPorts:
    """Construit les clients HTTP d'une nouvelle session à partir du client httpx partagé (lifespan)."""
    http = request.app.state.http
    auth = BearerAuth(user["token"])
    ports = CheckoutPorts(api=None, cart=None, gateway=request.app.state.gateway, auth=auth)
    ports.api = CommerceApiClient(http, auth, on_session_lost=ports.mark_session_lost)
    ports.cart = HttpCart(http, auth, on_session_lost=ports.mark_session_lost)
    return ports

def _load(store: CheckoutSessionStore, session_id: str, user: Dict[str, Any]):
    _, session, ports = store.entry(session_id, user["id"])
    if ports is not None:
        ports.refresh(user["token"])
    return session, ports

def _respond(session: CheckoutSession, ports: Optional[CheckoutPorts], status_code: int = 200) -> JSONResponse:
    view = session.snapshot()
    lost = bool(ports is not None and ports.session_lost)
    if lost:
        view["sessionLost"] = True
    response = JSONResponse(view, status_code=status_code)
    if lost:
        # Signal hors bande: le front redirige vers la connexion
        clear_session_cookie(response)
    return response

def _callback_base(request: Request, session_id: str) -> str:
    return str(request.url_for("get_checkout_session", session_id=session_id))


# module storefront.checkout.views
@router.get("/gateway.js", include_in_schema=False)
async def gateway_script(request: Request):
    """Sert la librairie de la passerelle (chargée une seule fois par processus)."""
    library = await load_library(request.app.state.gateway.loader)
    return Response(content=library.source, media_type="application/javascript")

@router.post("/cart", status_code=201)
async def open_cart_checkout(
    request: Request,
    user: Dict[str, Any] = Depends(require_user),
    ports: CheckoutPorts = Depends(get_checkout_ports),
    store: CheckoutSessionStore = Depends(get_store),
):
    """
    Ouvre une session CART à partir de l'instantané du panier.
    - Erreurs: 400 si panier vide, 502 si le service panier est indisponible
    """
    session = await CheckoutSession.from_cart(ports.cart, ports.api, ports.gateway)
    session.callback_base = _callback_base(request, session.id)
    store.add(user["id"], session, ports)
    return _respond(session, ports, status_code=201)

@router.post("/direct", status_code=201)
async def open_direct_checkout(
    request: Request,
    item: CheckoutItem,
    user: Dict[str, Any] = Depends(require_user),
    ports: CheckoutPorts = Depends(get_checkout_ports),
    store: CheckoutSessionStore = Depends(get_store),
):
    """Ouvre une session DIRECT ("buy now") pour un article unique; le panier n'est jamais consulté."""
    session = CheckoutSession.buy_now(item, ports.api, ports.gateway)
    session.callback_base = _callback_base(request, session.id)
    store.add(user["id"], session, ports)
    return _respond(session, ports, status_code=201)

@router.get("/{session_id}")
async def get_checkout_session(
    session_id: str,
    user: Dict[str, Any] = Depends(require_user),
    store: CheckoutSessionStore = Depends(get_store),
):
    session, ports = _load(store, session_id, user)
    return _respond(session, ports)

@router.delete("/{session_id}", status_code=204)
async def abandon_checkout_session(
    session_id: str,
    user: Dict[str, Any] = Depends(require_user),
    store: CheckoutSessionStore = Depends(get_store),
):
    """Abandonne une session (refusé, 409, pendant une soumission ou un paiement en cours)."""
    if store.discard(session_id, user["id"]) is None:
        return JSONResponse({"detail": "Checkout is in progress"}, status_code=409)
    return Response(status_code=204)

@router.post("/{session_id}/submit", dependencies=[Depends(optional_rate_limit(times=5, seconds=60))])
async def submit_checkout(
    session_id: str,
    shipping: Dict[str, Any] = Body(...),
    user: Dict[str, Any] = Depends(require_user),
    store: CheckoutSessionStore = Depends(get_store),
):
    """
    Soumet le formulaire de livraison.
    - Entrée JSON: {name, email, street, city, state, postalCode, phone}
    - 422 si le formulaire est invalide, 409 si une soumission est déjà en cours
    - Réponse: vue de session (AWAITING/PAYMENT_PENDING avec options d'overlay, PRICE_MISMATCH, erreurs)
    """
    session, ports = _load(store, session_id, user)
    await session.submit(shipping)
    return _respond(session, ports)

@router.post("/{session_id}/prices/confirm")
async def confirm_prices(
    session_id: str,
    user: Dict[str, Any] = Depends(require_user),
    store: CheckoutSessionStore = Depends(get_store),
):
    session, ports = _load(store, session_id, user)
    await session.confirm_price_update()
    return _respond(session, ports)

@router.post("/{session_id}/prices/cancel")
async def cancel_prices(
    session_id: str,
    user: Dict[str, Any] = Depends(require_user),
    store: CheckoutSessionStore = Depends(get_store),
):
    session, ports = _load(store, session_id, user)
    session.cancel_price_update()
    return _respond(session, ports)

@router.post("/{session_id}/payment/success")
async def payment_success(
    session_id: str,
    payment: PaymentSucceeded,
    user: Dict[str, Any] = Depends(require_user),
    store: CheckoutSessionStore = Depends(get_store),
):
    """
    Callback succès de l'overlay: {razorpay_order_id, razorpay_payment_id, razorpay_signature}
    (ou gatewayOrderId/paymentId/signature). Attend la vérification serveur avant de répondre.
    """
    session, ports = _load(store, session_id, user)
    session.resolve_payment(payment)
    await session.wait_settled()
    logger.info("checkout.payment_success session=%s state=%s", session.id, session.state.value)
    return _respond(session, ports)

@router.post("/{session_id}/payment/failure")
async def payment_failure(
    session_id: str,
    failure: PaymentFailed,
    user: Dict[str, Any] = Depends(require_user),
    store: CheckoutSessionStore = Depends(get_store),
):
    session, ports = _load(store, session_id, user)
    session.resolve_payment(failure)
    await session.wait_settled()
    return _respond(session, ports)

@router.post("/{session_id}/payment/dismiss")
async def payment_dismiss(
    session_id: str,
    user: Dict[str, Any] = Depends(require_user),
    store: CheckoutSessionStore = Depends(get_store),
):
    session, ports = _load(store, session_id, user)
    session.resolve_payment(PaymentDismissed())
    await session.wait_settled()
    return _respond(session, ports)

@router.post("/{session_id}/restart")
async def restart_checkout(
    session_id: str,
    user: Dict[str, Any] = Depends(require_user),
    store: CheckoutSessionStore = Depends(get_store),
):
    session, ports = _load(store, session_id, user)
    await session.restart()
    return _respond(session, ports)
