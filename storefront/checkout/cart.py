"""
Port du panier partagé (Cart Consistency Manager).
L'orchestrateur ne lit/vide le panier qu'à travers ce port, jamais directement:
- fetch_items: instantané du panier courant -> [CheckoutItem]
- clear: vidage idempotent (appelé une seule fois, après CONFIRMED, en mode CART)
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from pydantic import ValidationError

from storefront.config import CART_API_URL
from .client import ApiClient
from .errors import InvalidCartError
from .models import CheckoutItem

logger = logging.getLogger(__name__)


class CartPort(ABC):

    @abstractmethod
    async def fetch_items(self) -> List[CheckoutItem]:
        """Retourne l'instantané des lignes du panier."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Vide le panier (idempotent)."""
        ...


# module storefront.checkout.cart
def items_from_cart(payload: Dict[str, Any]) -> List[CheckoutItem]:
    """
    Convertit la réponse du service panier {items: [...], totalAmount} en CheckoutItem.
    - Une ligne invalide (sku vide, quantité <= 0, prix négatif) refuse tout le panier (InvalidCartError).
    """
    items: List[CheckoutItem] = []
    rejected: List[str] = []
    for raw in (payload or {}).get("items") or []:
        try:
            items.append(CheckoutItem.model_validate(raw))
        except ValidationError:
            rejected.append(str(raw.get("skuCode") or "") if isinstance(raw, dict) else "")
    if rejected:
        logger.warning("cart.invalid_lines skus=%s", rejected)
        raise InvalidCartError(rejected)
    return items


class HttpCart(ApiClient, CartPort):
    """Implémentation HTTP du port panier: GET /api/v1/cart, DELETE /api/v1/cart/clear."""

    def __init__(self, http, auth=None, on_session_lost=None, base_url: str = CART_API_URL):
        super().__init__(http, auth, on_session_lost)
        self.base_url = base_url.rstrip("/")

    async def fetch_items(self) -> List[CheckoutItem]:
        payload = await self._request("GET", f"{self.base_url}/api/v1/cart")
        return items_from_cart(payload if isinstance(payload, dict) else {})

    async def clear(self) -> None:
        await self._request("DELETE", f"{self.base_url}/api/v1/cart/clear")
