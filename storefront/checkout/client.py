"""
Façade HTTP vers la Commerce API (httpx).
- initiate_checkout: POST /api/checkout/initiate
- update_item_price: PUT /api/v1/cart/update-price/{skuCode}
- verify_payment: POST /api/payments/verify
Le jeton Bearer est attaché automatiquement (BearerAuth); un 401 déclenche le hook
on_session_lost (signal hors bande) puis lève SessionExpiredError.
"""
import logging
from decimal import Decimal
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from storefront.config import CART_API_URL, COMMERCE_API_URL
from .errors import SessionExpiredError, TransportError
from .models import CheckoutRequest, CheckoutResponse, PaymentSucceeded, VerificationResult

logger = logging.getLogger(__name__)


class BearerAuth(httpx.Auth):
    """Attache 'Authorization: Bearer <token>'; le jeton est rafraîchi par l'appelant."""

    def __init__(self, token: Optional[str] = None):
        self.token = token

    def auth_flow(self, request: httpx.Request):
        if self.token:
            request.headers["Authorization"] = f"Bearer {self.token}"
        yield request


def _server_message(response: httpx.Response) -> Optional[str]:
    """Extrait le message brut du serveur (clés message / error / detail), sinon le texte tronqué."""
    try:
        body = response.json()
    except ValueError:
        text = (response.text or "").strip()
        return text[:200] or None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


CHECKOUT_STATUSES = {"SUCCESS", "PENDING", "FAILED", "EXPIRED"}


def _is_checkout_body(body: Any) -> bool:
    """Corps de réponse de checkout (itemErrors, ou statut de checkout textuel) et non corps d'erreur HTTP."""
    if not isinstance(body, dict):
        return False
    if "itemErrors" in body:
        return True
    for key in ("outcome", "status"):
        value = body.get(key)
        if isinstance(value, str) and value.upper() in CHECKOUT_STATUSES:
            return True
    return False


class ApiClient:
    """Socle commun: client httpx partagé + authentification + traduction des erreurs."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        auth: Optional[BearerAuth] = None,
        on_session_lost: Optional[Callable[[], None]] = None,
    ):
        self.http = http
        self.auth = auth or BearerAuth()
        self.on_session_lost = on_session_lost

    async def _send(self, method: str, url: str, json: Any = None) -> httpx.Response:
        try:
            return await self.http.request(method, url, json=json, auth=self.auth)
        except httpx.RequestError as e:
            logger.warning("http.error method=%s url=%s error=%s", method, url, e)
            raise TransportError(f"{method} {url} failed: {e}") from e

    def _raise_for_status(self, method: str, url: str, response: httpx.Response) -> None:
        if response.status_code == 401:
            logger.warning("http.session_lost method=%s url=%s", method, url)
            if self.on_session_lost:
                self.on_session_lost()
            raise SessionExpiredError("Session expired, please sign in again", 401, _server_message(response))
        if response.is_error:
            message = _server_message(response)
            logger.warning("http.status method=%s url=%s status=%s message=%s", method, url, response.status_code, message)
            raise TransportError(f"{method} {url} returned {response.status_code}", response.status_code, message)

    async def _request(self, method: str, url: str, json: Any = None) -> Any:
        response = await self._send(method, url, json=json)
        self._raise_for_status(method, url, response)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{method} {url} returned invalid JSON", response.status_code) from e


class CommerceApiClient(ApiClient):

    def __init__(
        self,
        http: httpx.AsyncClient,
        auth: Optional[BearerAuth] = None,
        on_session_lost: Optional[Callable[[], None]] = None,
        base_url: str = COMMERCE_API_URL,
        cart_url: str = CART_API_URL,
    ):
        super().__init__(http, auth, on_session_lost)
        self.base_url = base_url.rstrip("/")
        self.cart_url = cart_url.rstrip("/")

    async def initiate_checkout(self, request: CheckoutRequest) -> CheckoutResponse:
        """
        Soumet la demande de checkout.
        - Un corps FAILED renvoyé avec un code 4xx (itemErrors) est traité comme une réponse, pas une erreur de transport.
        """
        url = f"{self.base_url}/api/checkout/initiate"
        payload = request.model_dump(mode="json", by_alias=True)
        response = await self._send("POST", url, json=payload)
        if response.status_code != 401 and 400 <= response.status_code < 500:
            body = self._json_or_none(response)
            if _is_checkout_body(body):
                return self._parse_checkout(body, url)
        self._raise_for_status("POST", url, response)
        return self._parse_checkout(self._json_or_none(response) or {}, url)

    async def update_item_price(self, sku_code: str, new_price: Decimal) -> None:
        url = f"{self.cart_url}/api/v1/cart/update-price/{quote(sku_code, safe='')}"
        await self._request("PUT", url, json={"price": float(new_price)})

    async def verify_payment(self, payment: PaymentSucceeded) -> VerificationResult:
        url = f"{self.base_url}/api/payments/verify"
        body = await self._request("POST", url, json=payment.model_dump(mode="json", by_alias=True))
        try:
            return VerificationResult.model_validate(body or {})
        except ValidationError as e:
            raise TransportError("Malformed verification response") from e

    @staticmethod
    def _json_or_none(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _parse_checkout(body: Any, url: str) -> CheckoutResponse:
        try:
            return CheckoutResponse.model_validate(body)
        except ValidationError as e:
            logger.warning("checkout.initiate malformed response url=%s errors=%s", url, e.error_count())
            raise TransportError("Malformed checkout response") from e
