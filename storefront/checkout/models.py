"""
Modèles du checkout (pydantic v2).
- Format fil: JSON camelCase (alias), attributs Python en snake_case.
- Montants en Decimal, sérialisés en nombres JSON.
- Tolère les anciens noms de champs de la Commerce API (status, razorpayOrderId).
"""
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    PlainSerializer,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .errors import FormValidationError
from .pricing import format_signed, price_diff, to_minor_units

MAX_CHECKOUT_ITEMS = 50
MAX_SHIPPING_ADDRESS_LENGTH = 500

Money = Annotated[Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckoutMode(str, Enum):
    CART = "CART"
    DIRECT = "DIRECT"


class CheckoutOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class ItemErrorReason(str, Enum):
    SKU_NOT_FOUND = "SKU_NOT_FOUND"
    PRODUCT_DISABLED = "PRODUCT_DISABLED"
    PRODUCT_DELETED = "PRODUCT_DELETED"
    VARIANT_DISABLED = "VARIANT_DISABLED"
    VARIANT_DELETED = "VARIANT_DELETED"
    PRICE_MISMATCH = "PRICE_MISMATCH"


class CheckoutState(str, Enum):
    FORM_ENTRY = "FORM_ENTRY"
    SUBMITTING = "SUBMITTING"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PRICE_MISMATCH = "PRICE_MISMATCH"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    GENERIC_ERROR = "GENERIC_ERROR"
    PRICES_UNSTABLE = "PRICES_UNSTABLE"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    VERIFYING = "VERIFYING"
    CONFIRMED = "CONFIRMED"
    VERIFICATION_SOFT_FAILED = "VERIFICATION_SOFT_FAILED"
    CANCELLED_BY_USER = "CANCELLED_BY_USER"


class CheckoutItem(WireModel):
    sku_code: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    unit_price: Money = Field(ge=0, alias="price")
    product_name: str = ""
    image_url: str = ""


class ShippingAddress(WireModel):
    name: str
    email: EmailStr
    street: str
    city: str
    state: str
    postal_code: str
    phone: str

    @field_validator("name", "street", "city", "state", "postal_code", "phone", mode="before")
    @classmethod
    def required(cls, v: Any) -> str:
        value = str(v or "").strip()
        if not value:
            raise ValueError("This field is required")
        return value

    def to_transport(self) -> str:
        """Sérialise l'adresse en chaîne JSON opaque (limite 500 caractères côté serveur)."""
        raw = self.model_dump_json(by_alias=True)
        if len(raw) > MAX_SHIPPING_ADDRESS_LENGTH:
            raise FormValidationError({"shippingAddress": "Shipping address is too long"})
        return raw


def parse_shipping_address(data: Any) -> ShippingAddress:
    """
    Validation locale du formulaire de livraison.
    - Accepte un ShippingAddress ou un dict (clés camelCase ou snake_case).
    - Lève FormValidationError({champ: message}) si un champ manque ou si l'email est invalide.
    """
    if isinstance(data, ShippingAddress):
        return data
    try:
        return ShippingAddress.model_validate(data or {})
    except ValidationError as e:
        errors: Dict[str, str] = {}
        for err in e.errors():
            field = str(err["loc"][0]) if err.get("loc") else "form"
            errors.setdefault(field, err.get("msg") or "Invalid value")
        raise FormValidationError(errors) from e


class CheckoutRequest(WireModel):
    mode: CheckoutMode
    items: List[CheckoutItem] = Field(min_length=1, max_length=MAX_CHECKOUT_ITEMS)
    shipping_address: str
    idempotency_key: str

    @model_validator(mode="after")
    def direct_has_single_item(self) -> "CheckoutRequest":
        if self.mode == CheckoutMode.DIRECT and len(self.items) != 1:
            raise ValueError("DIRECT checkout carries exactly one item")
        return self


class ItemError(WireModel):
    sku_code: str
    valid: Optional[bool] = None
    reason: Optional[ItemErrorReason] = None
    current_price: Optional[Money] = None

    @property
    def is_price_mismatch(self) -> bool:
        return self.reason == ItemErrorReason.PRICE_MISMATCH


class CheckoutResponse(WireModel):
    outcome: CheckoutOutcome = Field(validation_alias=AliasChoices("outcome", "status"))
    gateway_order_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("gatewayOrderId", "razorpayOrderId", "gateway_order_id")
    )
    amount: Optional[Money] = None
    currency: Optional[str] = None
    failure_reason: Optional[str] = None
    item_errors: List[ItemError] = Field(default_factory=list)

    @field_validator("outcome", mode="before")
    @classmethod
    def unknown_status_is_failure(cls, v: Any) -> str:
        # PENDING / EXPIRED côté serveur: aucun ordre payable n'a été créé
        return "SUCCESS" if str(v or "").upper() == "SUCCESS" else "FAILED"

    @field_validator("item_errors", mode="before")
    @classmethod
    def drop_valid_items(cls, v: Any) -> Any:
        # la Commerce API renvoie aussi les lignes valides (valid=true, reason=null)
        kept = []
        for entry in v or []:
            if isinstance(entry, dict):
                if entry.get("valid") is True or entry.get("reason") is None:
                    continue
            elif isinstance(entry, ItemError) and (entry.valid is True or entry.reason is None):
                continue
            kept.append(entry)
        return kept


class PriceMismatch(WireModel):
    sku_code: str
    product_name: str = ""
    old_price: Money
    current_price: Money

    @property
    def diff(self) -> Decimal:
        return price_diff(self.old_price, self.current_price)

    @property
    def diff_display(self) -> str:
        return format_signed(self.diff)


class PaymentHandoff(WireModel):
    gateway_order_id: str
    amount_minor_units: int = Field(ge=0)
    currency: str
    description: str

    @classmethod
    def from_response(cls, response: CheckoutResponse, description: str, default_currency: str) -> "PaymentHandoff":
        """Construit le handoff d'un SUCCESS; la conversion x100 n'a lieu qu'ici."""
        if not response.gateway_order_id or response.amount is None:
            raise ValueError("SUCCESS response without gateway order id or amount")
        return cls(
            gateway_order_id=response.gateway_order_id,
            amount_minor_units=to_minor_units(response.amount),
            currency=(response.currency or default_currency).upper(),
            description=description,
        )


# --- Issues renvoyées par l'overlay de paiement ---

class PaymentSucceeded(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    gateway_order_id: str = Field(validation_alias=AliasChoices("gatewayOrderId", "razorpay_order_id", "gateway_order_id"))
    payment_id: str = Field(validation_alias=AliasChoices("paymentId", "razorpay_payment_id", "payment_id"))
    signature: str = Field(validation_alias=AliasChoices("signature", "razorpay_signature"))


class PaymentFailed(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    description: str = "Payment failed"
    code: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def flatten_gateway_error(cls, data: Any) -> Any:
        # L'overlay rapporte {"error": {"code": ..., "description": ...}}
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            err = data["error"]
            return {"description": err.get("description") or "Payment failed", "code": err.get("code")}
        return data


class PaymentDismissed(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class VerificationResult(WireModel):
    verified: bool = False
    order_id: Optional[str] = None
    amount: Optional[Money] = None
    currency: Optional[str] = None
    status: Optional[str] = None

    @field_validator("order_id", mode="before")
    @classmethod
    def order_id_as_str(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)
