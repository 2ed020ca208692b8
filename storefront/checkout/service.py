"""
Cas d'usage 'checkout': orchestre façade Commerce API, port panier et passerelle de paiement.

Machine à états d'une tentative (jamais persistée):
    FORM_ENTRY -> SUBMITTING -> {AWAITING_PAYMENT, PRICE_MISMATCH, VALIDATION_ERROR, GENERIC_ERROR}
    AWAITING_PAYMENT -> PAYMENT_PENDING -> {VERIFYING -> CONFIRMED | VERIFICATION_SOFT_FAILED}
                                        | GENERIC_ERROR (échec passerelle) | CANCELLED_BY_USER
    PRICE_MISMATCH -> (confirmation) SUBMITTING | (annulation) FORM_ENTRY
                   -> PRICES_UNSTABLE quand le plafond de réconciliations est atteint

Le mode (CART / DIRECT) est fixé à la création: une session DIRECT n'a aucun accès au panier.
"""
import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

from storefront.config import DEFAULT_CURRENCY, MAX_PRICE_RECONCILIATIONS
from . import presentation as texts
from .cart import CartPort
from .errors import (
    CheckoutError,
    CheckoutInProgressError,
    GatewayError,
    InvalidTransitionError,
    TransportError,
    VerificationError,
)
from .gateway import PaymentGateway, PaymentOutcome, PendingPayment
from .models import (
    CheckoutItem,
    CheckoutMode,
    CheckoutOutcome,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutState,
    ItemError,
    PaymentDismissed,
    PaymentFailed,
    PaymentHandoff,
    PaymentSucceeded,
    PriceMismatch,
    ShippingAddress,
    VerificationResult,
    parse_shipping_address,
)

logger = logging.getLogger(__name__)

RESTARTABLE_STATES = {
    CheckoutState.VALIDATION_ERROR,
    CheckoutState.GENERIC_ERROR,
    CheckoutState.CANCELLED_BY_USER,
    CheckoutState.PRICES_UNSTABLE,
}


class EmptyCartError(CheckoutError):
    pass


def partition_item_errors(errors: List[ItemError]):
    """
    Sépare les erreurs d'articles en (écarts de prix, autres erreurs).
    Un PRICE_MISMATCH sans prix courant n'est pas réconciliable: il compte comme erreur bloquante.
    """
    mismatches: List[ItemError] = []
    others: List[ItemError] = []
    for err in errors:
        if err.is_price_mismatch and err.current_price is not None:
            mismatches.append(err)
        else:
            others.append(err)
    return mismatches, others


def classify_failure(response: CheckoutResponse) -> CheckoutState:
    """
    Règle de classification d'un FAILED, dans cet ordre:
    1) une erreur bloquante (hors prix) -> VALIDATION_ERROR, même si des écarts de prix existent
    2) sinon des écarts de prix -> PRICE_MISMATCH
    3) sinon -> GENERIC_ERROR
    """
    mismatches, others = partition_item_errors(response.item_errors)
    if others:
        return CheckoutState.VALIDATION_ERROR
    if mismatches:
        return CheckoutState.PRICE_MISMATCH
    return CheckoutState.GENERIC_ERROR


class CheckoutSession:
    """
    Orchestrateur d'une tentative de checkout.
    - api: façade Commerce API (initiate_checkout, update_item_price, verify_payment)
    - gateway: adaptateur de passerelle (open -> PendingPayment)
    - cart: port panier, requis en mode CART et ignoré en mode DIRECT
    """

    def __init__(
        self,
        mode: CheckoutMode,
        items: List[CheckoutItem],
        api,
        gateway: PaymentGateway,
        cart: Optional[CartPort] = None,
        shipping: Optional[ShippingAddress] = None,
        max_reconciliations: int = MAX_PRICE_RECONCILIATIONS,
        callback_base: str = "",
        session_id: Optional[str] = None,
    ):
        if mode == CheckoutMode.CART and cart is None:
            raise ValueError("CART checkout requires a cart port")
        if mode == CheckoutMode.DIRECT and len(items) != 1:
            raise ValueError("DIRECT checkout carries exactly one item")
        self.id = session_id or uuid4().hex
        self.mode = mode
        self.items: List[CheckoutItem] = list(items)
        self.api = api
        self.gateway = gateway
        self._cart = cart if mode == CheckoutMode.CART else None
        self.shipping = shipping
        self.max_reconciliations = max_reconciliations
        self.callback_base = callback_base

        self.state = CheckoutState.FORM_ENTRY
        self.history: List[CheckoutState] = [CheckoutState.FORM_ENTRY]
        self.reconciliations = 0
        self._reconciling = False
        self._reset_attempt()

    # --- fabriques -------------------------------------------------------

    @classmethod
    async def from_cart(cls, cart: CartPort, api, gateway: PaymentGateway, **kwargs) -> "CheckoutSession":
        items = await cart.fetch_items()
        if not items:
            raise EmptyCartError("Your cart is empty")
        return cls(CheckoutMode.CART, items, api, gateway, cart=cart, **kwargs)

    @classmethod
    def buy_now(cls, item: CheckoutItem, api, gateway: PaymentGateway, **kwargs) -> "CheckoutSession":
        return cls(CheckoutMode.DIRECT, [item], api, gateway, **kwargs)

    # --- état ------------------------------------------------------------

    def _reset_attempt(self) -> None:
        self.response: Optional[CheckoutResponse] = None
        self.validation_errors: List[ItemError] = []
        self.price_mismatches: List[PriceMismatch] = []
        self.error_message: Optional[str] = None
        self.handoff: Optional[PaymentHandoff] = None
        self.pending: Optional[PendingPayment] = None
        self.payment: Optional[PaymentSucceeded] = None
        self.verification: Optional[VerificationResult] = None
        self.cart_cleared = False
        self._payment_task: Optional[asyncio.Task] = None

    def _transition(self, state: CheckoutState) -> None:
        logger.info("checkout.state session=%s mode=%s %s->%s", self.id, self.mode.value, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _fail(self, message: str) -> None:
        self.error_message = message
        self._transition(CheckoutState.GENERIC_ERROR)

    def build_request(self) -> CheckoutRequest:
        """Construit la requête à partir de la sélection courante (jamais relue depuis le serveur)."""
        if self.shipping is None:
            raise InvalidTransitionError("Shipping address missing")
        return CheckoutRequest(
            mode=self.mode,
            items=self.items,
            shipping_address=self.shipping.to_transport(),
            idempotency_key=uuid4().hex,
        )

    # --- soumission ------------------------------------------------------

    async def submit(self, shipping: Any) -> CheckoutState:
        """
        Valide le formulaire puis soumet le checkout.
        - Refusé hors FORM_ENTRY (CheckoutInProgressError): une seule initiation en vol par session.
        - FormValidationError si le formulaire est invalide; l'état reste FORM_ENTRY.
        """
        if self.state != CheckoutState.FORM_ENTRY:
            raise CheckoutInProgressError(f"Checkout already in progress ({self.state.value})")
        address = parse_shipping_address(shipping)
        address.to_transport()
        self.shipping = address
        self.reconciliations = 0
        return await self._submit()

    async def _submit(self) -> CheckoutState:
        self._reset_attempt()
        self._transition(CheckoutState.SUBMITTING)
        try:
            request = self.build_request()
        except ValueError as e:
            logger.warning("checkout.request invalid session=%s error=%s", self.id, e)
            self._fail(texts.CHECKOUT_FAILED)
            return self.state
        logger.info(
            "checkout.submit session=%s mode=%s items=%s attempt=%s",
            self.id, self.mode.value, len(request.items), self.reconciliations,
        )
        try:
            response = await self.api.initiate_checkout(request)
        except TransportError as e:
            self._fail(e.server_message or texts.CHECKOUT_FAILED)
            return self.state
        self.response = response

        if response.outcome == CheckoutOutcome.SUCCESS:
            await self._hand_off(response)
            return self.state

        self._apply_failure(response)
        return self.state

    def _apply_failure(self, response: CheckoutResponse) -> None:
        mismatches, others = partition_item_errors(response.item_errors)
        state = classify_failure(response)
        if state == CheckoutState.VALIDATION_ERROR:
            self.validation_errors = others
            logger.info("checkout.validation_error session=%s skus=%s", self.id, [e.sku_code for e in others])
            self._transition(state)
        elif state == CheckoutState.PRICE_MISMATCH:
            if self.reconciliations >= self.max_reconciliations:
                self.error_message = texts.PRICES_UNSTABLE
                logger.warning("checkout.prices_unstable session=%s reconciliations=%s", self.id, self.reconciliations)
                self._transition(CheckoutState.PRICES_UNSTABLE)
                return
            self.price_mismatches = self._mismatches(mismatches)
            self._transition(state)
        else:
            self._fail(response.failure_reason or texts.CHECKOUT_FAILED)

    def _mismatches(self, errors: List[ItemError]) -> List[PriceMismatch]:
        """Associe chaque écart au prix cru par le client, dans l'ordre des articles de la requête."""
        position = {it.sku_code: i for i, it in enumerate(self.items)}
        by_sku = {it.sku_code: it for it in self.items}
        ordered = sorted(errors, key=lambda e: position.get(e.sku_code, len(position)))
        result: List[PriceMismatch] = []
        for err in ordered:
            item = by_sku.get(err.sku_code)
            result.append(PriceMismatch(
                sku_code=err.sku_code,
                product_name=item.product_name if item else "",
                old_price=item.unit_price if item else Decimal("0"),
                current_price=err.current_price,
            ))
        return result

    # --- réconciliation des prix ----------------------------------------

    async def confirm_price_update(self) -> CheckoutState:
        """
        Met à jour les prix un par un (séquentiel), puis resoumet une seule fois.
        - Au premier échec: abandon de la boucle -> GENERIC_ERROR, sans toucher aux articles restants.
        """
        if self.state != CheckoutState.PRICE_MISMATCH:
            raise InvalidTransitionError(f"No price update to confirm ({self.state.value})")
        if self._reconciling:
            raise CheckoutInProgressError("Price update already in progress")
        self._reconciling = True
        try:
            self.reconciliations += 1
            for mismatch in self.price_mismatches:
                try:
                    await self.api.update_item_price(mismatch.sku_code, mismatch.current_price)
                except TransportError as e:
                    logger.warning("checkout.price_update failed session=%s sku=%s error=%s", self.id, mismatch.sku_code, e)
                    self._fail(texts.PRICE_UPDATE_FAILED)
                    return self.state
                self._set_price(mismatch.sku_code, mismatch.current_price)
            return await self._submit()
        finally:
            self._reconciling = False

    def cancel_price_update(self) -> CheckoutState:
        if self.state != CheckoutState.PRICE_MISMATCH:
            raise InvalidTransitionError(f"No price update to cancel ({self.state.value})")
        if self._reconciling:
            raise CheckoutInProgressError("Price update already in progress")
        self._reset_attempt()
        self._transition(CheckoutState.FORM_ENTRY)
        return self.state

    def _set_price(self, sku_code: str, price: Decimal) -> None:
        self.items = [
            it.model_copy(update={"unit_price": price}) if it.sku_code == sku_code else it
            for it in self.items
        ]

    # --- paiement --------------------------------------------------------

    def _description(self) -> str:
        count = sum(it.quantity for it in self.items)
        if len(self.items) == 1 and self.items[0].product_name:
            return f"{self.items[0].product_name} x{count}"
        return f"Order of {count} item(s)"

    async def _hand_off(self, response: CheckoutResponse) -> None:
        self._transition(CheckoutState.AWAITING_PAYMENT)
        try:
            self.handoff = PaymentHandoff.from_response(response, self._description(), DEFAULT_CURRENCY)
        except ValueError:
            logger.warning("checkout.handoff incomplete session=%s", self.id)
            self._fail(texts.GATEWAY_INCOMPLETE)
            return
        try:
            self.pending = await self.gateway.open(self.handoff, self.shipping, self.callback_base)
        except GatewayError as e:
            self._fail(str(e))
            return
        self._transition(CheckoutState.PAYMENT_PENDING)
        self._payment_task = asyncio.create_task(self._await_payment(self.pending))

    async def _await_payment(self, pending: PendingPayment) -> None:
        outcome = await pending.outcome()
        if isinstance(outcome, PaymentSucceeded):
            await self._verify(outcome)
        elif isinstance(outcome, PaymentFailed):
            logger.info("checkout.payment_failed session=%s code=%s", self.id, outcome.code)
            self._fail(outcome.description or texts.PAYMENT_FAILED)
        else:
            # Aucune annulation envoyée au serveur: l'ordre pré-paiement expire côté serveur
            logger.info("checkout.payment_dismissed session=%s order=%s", self.id, pending.handoff.gateway_order_id)
            self._transition(CheckoutState.CANCELLED_BY_USER)

    async def _verify(self, payment: PaymentSucceeded) -> None:
        self.payment = payment
        self._transition(CheckoutState.VERIFYING)
        try:
            result = await self.api.verify_payment(payment)
            self.verification = result
            if not result.verified:
                raise VerificationError(f"Payment not verified (status={result.status})")
        except Exception as e:
            # Paiement capturé côté passerelle: le succès reste affiché, marqué non vérifié
            logger.warning("checkout.verify soft_failure session=%s payment=%s error=%s", self.id, payment.payment_id, e)
            self._transition(CheckoutState.VERIFICATION_SOFT_FAILED)
            return
        self._transition(CheckoutState.CONFIRMED)
        if self._cart is not None:
            await self._clear_cart()

    async def _clear_cart(self) -> None:
        try:
            await self._cart.clear()
            self.cart_cleared = True
        except Exception:
            logger.exception("checkout.cart_clear failed session=%s", self.id)

    def resolve_payment(self, outcome: PaymentOutcome) -> None:
        """Point d'entrée des callbacks de l'overlay (success / failure / dismiss)."""
        if self.state != CheckoutState.PAYMENT_PENDING or self.pending is None:
            raise InvalidTransitionError(f"No payment pending ({self.state.value})")
        self.pending.resolve(outcome)

    async def wait_settled(self) -> CheckoutState:
        """Attend la fin du traitement post-paiement (vérification, nettoyage du panier)."""
        if self._payment_task is not None:
            await self._payment_task
        return self.state

    # --- reprise ---------------------------------------------------------

    async def restart(self) -> CheckoutState:
        """
        Retour au formulaire après une erreur ou une annulation (adresse conservée).
        - CART: relit l'instantané du panier (l'utilisateur a pu le corriger).
        - DIRECT: conserve l'article unique, aucun accès au panier.
        """
        if self.state not in RESTARTABLE_STATES:
            raise InvalidTransitionError(f"Cannot restart from {self.state.value}")
        if self._cart is not None:
            items = await self._cart.fetch_items()
            if not items:
                raise EmptyCartError("Your cart is empty")
            self.items = items
        self.reconciliations = 0
        self._reset_attempt()
        self._transition(CheckoutState.FORM_ENTRY)
        # l'historique couvre la tentative courante
        self.history = [CheckoutState.FORM_ENTRY]
        return self.state

    def close(self) -> None:
        """Abandonne l'attente de paiement en cours (session oubliée par le registre)."""
        if self._payment_task is not None and not self._payment_task.done():
            self._payment_task.cancel()
            logger.info("checkout.session_closed session=%s state=%s", self.id, self.state.value)

    def snapshot(self) -> Dict[str, Any]:
        return texts.present(self)
