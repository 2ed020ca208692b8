"""
Adaptateur de la passerelle de paiement (overlay navigateur, piloté par callbacks).
- La librairie cliente (checkout.js) est chargée paresseusement une seule fois par processus
  (ressource globale mémoïsée, sans teardown) puis servie au navigateur.
- Chaque handoff est exposé comme un PendingPayment: un future qui se résout en
  PaymentSucceeded | PaymentFailed | PaymentDismissed quand l'overlay rappelle le BFF.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from storefront.config import GATEWAY_KEY_ID, GATEWAY_SCRIPT_URL, HTTP_TIMEOUT_SECONDS, STORE_NAME
from .errors import GatewayError, InvalidTransitionError
from .models import PaymentDismissed, PaymentFailed, PaymentHandoff, PaymentSucceeded, ShippingAddress

logger = logging.getLogger(__name__)

PaymentOutcome = Union[PaymentSucceeded, PaymentFailed, PaymentDismissed]
ScriptLoader = Callable[[str], Awaitable[str]]


class GatewayLibrary:
    def __init__(self, script_url: str, source: str):
        self.script_url = script_url
        self.source = source


_library: Optional[GatewayLibrary] = None
_library_lock: Optional[asyncio.Lock] = None


async def fetch_script(url: str) -> str:
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
        r = await client.get(url)
        r.raise_for_status()
        return r.text


# module storefront.checkout.gateway
async def load_library(loader: Optional[ScriptLoader] = None, script_url: str = GATEWAY_SCRIPT_URL) -> GatewayLibrary:
    """
    Charge la librairie de la passerelle au premier appel puis la réutilise.
    - Les appels concurrents attendent le même chargement (verrou).
    - En cas d'échec rien n'est mémorisé: le prochain handoff retentera le chargement.
    """
    global _library, _library_lock
    if _library is not None:
        return _library
    if _library_lock is None:
        _library_lock = asyncio.Lock()
    async with _library_lock:
        if _library is None:
            try:
                source = await (loader or fetch_script)(script_url)
            except Exception as e:
                logger.warning("gateway.library load failed url=%s error=%s", script_url, e)
                raise GatewayError("Failed to load payment gateway") from e
            _library = GatewayLibrary(script_url, source)
            logger.info("gateway.library loaded url=%s size=%s", script_url, len(source))
    return _library


def loaded_library() -> Optional[GatewayLibrary]:
    return _library


def reset_library() -> None:
    """Oublie la librairie mémoïsée (tests uniquement)."""
    global _library, _library_lock
    _library = None
    _library_lock = None


class PendingPayment:
    """Handoff en cours: configuration de l'overlay + future de l'issue."""

    def __init__(self, handoff: PaymentHandoff, options: Dict[str, Any], future: "asyncio.Future[PaymentOutcome]"):
        self.handoff = handoff
        self.options = options
        self._future = future

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, outcome: PaymentOutcome) -> None:
        """
        Transmet l'issue rapportée par l'overlay.
        - Une seule issue est acceptée par handoff (InvalidTransitionError ensuite).
        - Un succès pour un autre ordre de passerelle est refusé (GatewayError).
        """
        if self._future.done():
            raise InvalidTransitionError("Payment outcome already received")
        if isinstance(outcome, PaymentSucceeded) and outcome.gateway_order_id != self.handoff.gateway_order_id:
            raise GatewayError("Payment does not belong to this order")
        self._future.set_result(outcome)

    async def outcome(self) -> PaymentOutcome:
        return await self._future


class PaymentGateway:

    def __init__(
        self,
        key_id: str = GATEWAY_KEY_ID,
        store_name: str = STORE_NAME,
        loader: Optional[ScriptLoader] = None,
    ):
        self.key_id = key_id
        self.store_name = store_name
        self.loader = loader

    def build_options(self, handoff: PaymentHandoff, prefill: Optional[ShippingAddress], callback_base: str) -> Dict[str, Any]:
        """
        Configuration attendue par l'overlay (contrat tiers):
        {key, amount (unités mineures), currency, name, description, order_id, prefill, callbacks}
        """
        base = callback_base.rstrip("/")
        return {
            "key": self.key_id,
            "amount": handoff.amount_minor_units,
            "currency": handoff.currency,
            "name": self.store_name,
            "description": handoff.description,
            "order_id": handoff.gateway_order_id,
            "prefill": {
                "name": prefill.name if prefill else "",
                "email": str(prefill.email) if prefill else "",
                "contact": prefill.phone if prefill else "",
            },
            "callbacks": {
                "success": f"{base}/payment/success",
                "failure": f"{base}/payment/failure",
                "dismiss": f"{base}/payment/dismiss",
            },
        }

    async def open(self, handoff: PaymentHandoff, prefill: Optional[ShippingAddress] = None, callback_base: str = "") -> PendingPayment:
        await load_library(self.loader)
        future: "asyncio.Future[PaymentOutcome]" = asyncio.get_running_loop().create_future()
        options = self.build_options(handoff, prefill, callback_base)
        logger.info(
            "gateway.open order=%s amount=%s currency=%s",
            handoff.gateway_order_id, handoff.amount_minor_units, handoff.currency,
        )
        return PendingPayment(handoff, options, future)
