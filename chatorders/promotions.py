# chatorders/promotions.py
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional


@dataclass
class ResolvedPrice:
    unit_price: Decimal
    promotion_id: Optional[int] = None


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value or 0))


def _product_ids(raw) -> List[int]:
    if not isinstance(raw, list):
        return []
    out = []
    for v in raw:
        try:
            n = int(v)
        except (TypeError, ValueError):
            continue
        if n > 0:
            out.append(n)
    return out


def promotion_applies(promo, product) -> bool:
    if product.id in _product_ids(promo.product_ids):
        return True
    categories = {str(c).lower() for c in (product.categories or [])}
    labels = promo.product_tag_labels or []
    return any(str(label).lower() in categories for label in labels)


def discount_for(promo, base_price: Decimal) -> Decimal:
    value = _as_decimal(promo.discount_value)
    if promo.discount_type == "percent":
        discount = (base_price * value / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    else:
        discount = value
    # never below zero, never more than the product itself
    return max(Decimal(0), min(discount, base_price))


def resolve_price(product, promotions: Iterable) -> ResolvedPrice:
    """Effective unit price for `product` given the merchant's active promotions.

    The promotion with the strictly largest positive discount wins (earliest on
    ties). Activity (flag and date window) is filtered by the caller when the
    candidate list is loaded.
    """
    base_price = _as_decimal(product.price)
    best_promo = None
    best_discount = Decimal(0)

    for promo in promotions or []:
        if not promotion_applies(promo, product):
            continue
        discount = discount_for(promo, base_price)
        if discount > best_discount:
            best_discount = discount
            best_promo = promo

    if best_promo is None or best_discount <= 0:
        return ResolvedPrice(unit_price=base_price)
    return ResolvedPrice(unit_price=max(Decimal(0), base_price - best_discount), promotion_id=best_promo.id)
