"""
Textes affichés au client et vue JSON d'une session de checkout.
"""
from typing import Any, Dict, List

from .models import CheckoutState, ItemError, ItemErrorReason
from .pricing import order_summary

REASON_TEXT: Dict[ItemErrorReason, str] = {
    ItemErrorReason.SKU_NOT_FOUND: "Product not found",
    ItemErrorReason.PRODUCT_DISABLED: "Product is currently unavailable",
    ItemErrorReason.PRODUCT_DELETED: "Product has been removed",
    ItemErrorReason.VARIANT_DISABLED: "Selected variant is currently unavailable",
    ItemErrorReason.VARIANT_DELETED: "Selected variant has been removed",
    ItemErrorReason.PRICE_MISMATCH: "Price has changed",
}

CHECKOUT_FAILED = "Checkout failed. Please try again."
PRICE_UPDATE_FAILED = "Failed to update prices"
PRICES_UNSTABLE = "Prices keep changing. Please review your cart and try again."
PAYMENT_FAILED = "Payment failed"
GATEWAY_INCOMPLETE = "Checkout failed: incomplete payment details"
FIX_CART_HINT = "Please update your cart and try again."


def describe_item_error(error: ItemError) -> Dict[str, Any]:
    return {
        "skuCode": error.sku_code,
        "reason": error.reason.value,
        "message": REASON_TEXT.get(error.reason, "Item cannot be purchased"),
    }


def _money(value: Any) -> str:
    return f"{value:.2f}"


def present(session) -> Dict[str, Any]:
    """
    Vue JSON d'une session (consommée par le front):
    - state, mode, items, summary
    - itemErrors (VALIDATION_ERROR), priceMismatches (PRICE_MISMATCH), error
    - payment: options de l'overlay tant que le paiement est en attente
    - order: résultat de vérification, marqueur verified/unverified
    """
    view: Dict[str, Any] = {
        "id": session.id,
        "mode": session.mode.value,
        "state": session.state.value,
        "items": [it.model_dump(mode="json", by_alias=True) for it in session.items],
        "summary": {k: _money(v) for k, v in order_summary(session.items).items()},
        "shippingAddress": session.shipping.model_dump(mode="json", by_alias=True) if session.shipping else None,
        "error": session.error_message,
    }

    if session.state == CheckoutState.VALIDATION_ERROR:
        view["itemErrors"] = [describe_item_error(e) for e in session.validation_errors]
        view["hint"] = FIX_CART_HINT

    if session.state == CheckoutState.PRICE_MISMATCH:
        mismatches: List[Dict[str, Any]] = []
        for m in session.price_mismatches:
            entry = m.model_dump(mode="json", by_alias=True)
            entry["diff"] = m.diff_display
            mismatches.append(entry)
        view["priceMismatches"] = mismatches

    if session.state == CheckoutState.PAYMENT_PENDING and session.pending is not None:
        view["payment"] = session.pending.options

    if session.state in (CheckoutState.CONFIRMED, CheckoutState.VERIFICATION_SOFT_FAILED):
        verification = session.verification
        view["order"] = {
            "orderId": verification.order_id if verification else None,
            "gatewayOrderId": session.handoff.gateway_order_id if session.handoff else None,
            "paymentId": session.payment.payment_id if session.payment else None,
            "amount": _money(verification.amount) if verification and verification.amount is not None else None,
            "currency": (verification.currency if verification else None) or (session.handoff.currency if session.handoff else None),
            "status": verification.status if verification else None,
            "verification": "verified" if session.state == CheckoutState.CONFIRMED else "unverified",
        }
    return view
