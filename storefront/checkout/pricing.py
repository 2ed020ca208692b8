"""
Calculs monétaires purs (pas d'HTTP, pas d'état).
- Montants en Decimal, arrondis à 2 décimales (half-even).
- Conversion unités majeures -> mineures (x100) pour la passerelle.
- Récapitulatif d'affichage: sous-total + port forfaitaire + taxe.
"""
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, Dict, Iterable

from storefront.config import SHIPPING_FLAT, TAX_RATE

CENT = Decimal("0.01")

# module storefront.checkout.pricing
def to_decimal(value: Any) -> Decimal:
    """
    Convertit une valeur str|int|float|Decimal en Decimal.
    - Passe par str() pour éviter les artefacts binaires des floats (12.3 -> 12.3 et non 12.2999...).
    """
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))

def round_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_EVEN)

def to_minor_units(amount: Any) -> int:
    """
    Convertit un montant en unités majeures vers des unités mineures (centimes, paise).
    - 20.00 -> 2000 ; 12.345 -> 1234 (half-even)
    """
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))

def subtotal(items: Iterable[Any]) -> Decimal:
    total = sum((to_decimal(it.unit_price) * it.quantity for it in items), Decimal("0"))
    return round_money(total)

def order_summary(
    items: Iterable[Any],
    shipping: Decimal = SHIPPING_FLAT,
    tax_rate: Decimal = TAX_RATE,
) -> Dict[str, Decimal]:
    """
    Récapitulatif affiché au client (formule fixe, non contractuelle):
    - subtotal = somme(prix unitaire x quantité)
    - tax = subtotal x tax_rate
    - total = subtotal + shipping + tax
    Chaque composante est arrondie avant la somme.
    """
    sub = subtotal(items)
    ship = round_money(shipping)
    tax = round_money(sub * to_decimal(tax_rate))
    return {
        "subtotal": sub,
        "shipping": ship,
        "tax": tax,
        "total": round_money(sub + ship + tax),
    }

def price_diff(old_price: Any, current_price: Any) -> Decimal:
    return round_money(to_decimal(current_price) - to_decimal(old_price))

def format_signed(amount: Any) -> str:
    """Formate un écart de prix avec signe explicite: +2.00, -0.50, +0.00."""
    value = round_money(amount)
    sign = "-" if value < 0 else "+"
    return f"{sign}{abs(value):.2f}"
