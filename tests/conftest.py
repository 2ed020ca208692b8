import os

# Pas de Redis pendant les tests (le lifespan désactive proprement le rate limiting)
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import pytest
from decimal import Decimal
from typing import Generator, Dict, Any, List, Optional
from fastapi.testclient import TestClient

from storefront.app_setup.factory import create_app
from storefront.utils.security import require_user
from storefront.checkout.cart import CartPort
from storefront.checkout.errors import TransportError
from storefront.checkout.gateway import PaymentGateway, reset_library
from storefront.checkout.models import CheckoutItem, CheckoutResponse, VerificationResult
from storefront.checkout.views import CheckoutPorts, get_checkout_ports

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)
        elif "/functional/" in nodeid:
            item.add_marker(pytest.mark.functional)


# --- Doublures des collaborateurs du checkout ---

class FakeCommerceApi:
    """
    Commerce API en mémoire.
    - responses: file de CheckoutResponse (ou d'exceptions) renvoyées par initiate_checkout
    - enregistre les requêtes, mises à jour de prix et vérifications
    """

    def __init__(self, responses=None, verification: Optional[VerificationResult] = None):
        self.responses = list(responses or [])
        self.verification = verification or VerificationResult(
            verified=True, order_id="1001", amount=Decimal("118.79"), currency="INR", status="PAID"
        )
        self.requests: List[Any] = []
        self.price_updates: List[Any] = []
        self.verified: List[Any] = []
        self.fail_price_update_for = set()
        self.verify_error: Optional[Exception] = None

    async def initiate_checkout(self, request):
        self.requests.append(request)
        if not self.responses:
            raise AssertionError("unexpected initiate_checkout call")
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def update_item_price(self, sku_code, new_price):
        if sku_code in self.fail_price_update_for:
            raise TransportError("PUT update-price failed", 500, "Internal error")
        self.price_updates.append((sku_code, new_price))

    async def verify_payment(self, payment):
        self.verified.append(payment)
        if self.verify_error is not None:
            raise self.verify_error
        return self.verification


class FakeCart(CartPort):

    def __init__(self, items: Optional[List[CheckoutItem]] = None):
        self.items = list(items or [])
        self.fetch_calls = 0
        self.clear_calls = 0
        self.clear_error: Optional[Exception] = None

    async def fetch_items(self) -> List[CheckoutItem]:
        self.fetch_calls += 1
        return list(self.items)

    async def clear(self) -> None:
        self.clear_calls += 1
        if self.clear_error is not None:
            raise self.clear_error
        self.items = []


def item(sku="SKU-A", quantity=1, price="10.00", name="Item") -> CheckoutItem:
    return CheckoutItem(sku_code=sku, quantity=quantity, unit_price=Decimal(price), product_name=name)

def success(order_id="order_abc", amount=118.79, currency="INR") -> CheckoutResponse:
    return CheckoutResponse.model_validate(
        {"outcome": "SUCCESS", "gatewayOrderId": order_id, "amount": amount, "currency": currency, "itemErrors": []}
    )

def failed(*item_errors: Dict[str, Any], reason: Optional[str] = None) -> CheckoutResponse:
    return CheckoutResponse.model_validate(
        {"outcome": "FAILED", "failureReason": reason, "itemErrors": list(item_errors)}
    )

SHIPPING = {
    "name": "Asha Rao",
    "email": "asha@example.com",
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "postalCode": "560001",
    "phone": "+919800000000",
}


@pytest.fixture
def make_item():
    return item

@pytest.fixture
def make_success():
    return success

@pytest.fixture
def make_failed():
    return failed

@pytest.fixture
def shipping() -> Dict[str, str]:
    return dict(SHIPPING)

@pytest.fixture
def commerce_api() -> FakeCommerceApi:
    return FakeCommerceApi()

@pytest.fixture
def cart() -> FakeCart:
    return FakeCart([item("SKU-A", 2, "50.00", "Mug"), item("SKU-B", 1, "10.00", "Poster")])

@pytest.fixture
def gateway() -> PaymentGateway:
    async def _loader(url: str) -> str:
        return "/* checkout.js */"
    return PaymentGateway(key_id="rzp_test_key", store_name="Test Store", loader=_loader)

@pytest.fixture(autouse=True)
def _reset_gateway_library():
    reset_library()
    yield
    reset_library()


# --- Application ---

@pytest.fixture(scope="session")
def app():
    return create_app()

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

# Simuler un utilisateur authentifié pour les endpoints protégés
@pytest.fixture(autouse=True)
def _override_require_user(app):
    fake_user: Dict[str, Any] = {"id": "test-user", "token": "fake-token"}
    app.dependency_overrides[require_user] = lambda: fake_user
    try:
        yield
    finally:
        app.dependency_overrides.pop(require_user, None)

@pytest.fixture
def ports(app, commerce_api, cart, gateway) -> Generator[CheckoutPorts, None, None]:
    """Remplace les clients HTTP réels par les doublures pour les nouvelles sessions."""
    p = CheckoutPorts(api=commerce_api, cart=cart, gateway=gateway)
    app.dependency_overrides[get_checkout_ports] = lambda: p
    try:
        yield p
    finally:
        app.dependency_overrides.pop(get_checkout_ports, None)
