"""Promotion rules: which promotion applies to a cart line and what the line costs."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from .errors import ValidationError
from .models import Promotion, Product

log = logging.getLogger(__name__)

PROMOTION_TYPES = ("percentage", "fixed", "discount", "2x1", "3x2", "3x1")

# "buy N, pay M"
BUY_PAY_QUANTITIES = {
    "2x1": (2, 1),
    "3x2": (3, 2),
    "3x1": (3, 1),
}

TYPE_LABELS = {
    "percentage": "Percentage off",
    "fixed": "Amount off",
    "discount": "Special price",
    "2x1": "Buy 2, pay 1",
    "3x2": "Buy 3, pay 2",
    "3x1": "Buy 3, pay 1",
}


@dataclass
class AppliedPromotion:
    """Snapshot of the promotion fields a cart line needs for pricing."""
    id: Optional[int]
    type: str
    value: Optional[int] = None
    total_price_cents: Optional[int] = None
    buy_quantity: int = 1
    pay_quantity: int = 1
    name: str = ""

    @classmethod
    def from_model(cls, promo: Promotion) -> "AppliedPromotion":
        buy, pay = BUY_PAY_QUANTITIES.get(promo.type, (promo.buy_quantity or 1, promo.pay_quantity or 1))
        return cls(
            id=promo.id,
            type=promo.type,
            value=promo.value,
            total_price_cents=promo.total_price_cents,
            buy_quantity=buy,
            pay_quantity=pay,
            name=promo.name,
        )

    @property
    def label(self):
        return TYPE_LABELS.get(self.type, self.type)


def is_active(promo, now=None) -> bool:
    now = now or datetime.utcnow()
    if not promo.active:
        return False
    if promo.start_date and promo.start_date > now:
        return False
    if promo.end_date and promo.end_date < now:
        return False
    return True


class AppliedPromotionRule:
    """An active promotion together with the product ids it is restricted to."""

    def __init__(self, promo: Promotion):
        self.promotion = AppliedPromotion.from_model(promo)
        self.product_ids = {p.id for p in promo.products}

    def applies_to(self, product_id) -> bool:
        # no product restriction means the whole catalog
        return not self.product_ids or product_id in self.product_ids


def active_promotions(db, now=None):
    rows = db.execute(
        select(Promotion)
        .options(selectinload(Promotion.products))
        .where(Promotion.active.is_(True))
        .order_by(Promotion.created_at.desc(), Promotion.id.desc())
    ).scalars().all()
    return [AppliedPromotionRule(p) for p in rows if is_active(p, now)]


def find_promotion(rules, product_id) -> Optional[AppliedPromotion]:
    for rule in rules:
        if rule.applies_to(product_id):
            return rule.promotion
    return None


def line_total(price_cents: int, quantity: int, promotion: Optional[AppliedPromotion] = None) -> int:
    if quantity <= 0:
        return 0
    full = price_cents * quantity
    if promotion is None:
        return full

    kind = promotion.type
    if kind == "discount" and promotion.total_price_cents:
        return promotion.total_price_cents * quantity
    if kind == "percentage":
        pct = min(max(promotion.value or 0, 0), 100)
        return int(round(full * (100 - pct) / 100))
    if kind == "fixed":
        return max(0, price_cents - (promotion.value or 0)) * quantity
    if kind in BUY_PAY_QUANTITIES:
        buy, pay = promotion.buy_quantity, promotion.pay_quantity
        if quantity >= buy:
            sets, remainder = divmod(quantity, buy)
            return (sets * pay + remainder) * price_cents
    return full


# --------------------------- admin ---------------------------

def _parse_date(raw):
    raw = (raw or "").strip()
    if not raw:
        return None
    for fmt in ("%Y-%m-%dT%H:%M", "%Y-%m-%d"):
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    raise ValidationError(f"Invalid date: {raw}")


def _parse_cents(raw, field):
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        return int(round(float(raw) * 100))
    except ValueError:
        raise ValidationError(f"{field} must be a number")


def validate_promotion_form(form):
    """Turn the promotion form into model fields plus the selected product ids."""
    name = (form.get("name") or "").strip()
    kind = (form.get("type") or "").strip()
    if not name or not kind:
        raise ValidationError("Promotion name and type are required")
    if kind not in PROMOTION_TYPES:
        raise ValidationError(f"Unknown promotion type: {kind}")

    data = {
        "name": name,
        "description": (form.get("description") or "").strip(),
        "type": kind,
        "value": None,
        "total_price_cents": None,
        "active": form.get("active") in ("on", "1", "true", True),
        "start_date": _parse_date(form.get("start_date")),
        "end_date": _parse_date(form.get("end_date")),
    }
    if data["start_date"] and data["end_date"] and data["end_date"] < data["start_date"]:
        raise ValidationError("End date must be after start date")

    if kind == "percentage":
        try:
            value = int(form.get("value") or 0)
        except ValueError:
            raise ValidationError("Promotion value must be a number")
        if value <= 0 or value > 100:
            raise ValidationError("Percentage must be between 1 and 100")
        data["value"] = value
    elif kind == "fixed":
        value = _parse_cents(form.get("value"), "Promotion value")
        if not value or value <= 0:
            raise ValidationError("Promotion value must be greater than 0")
        data["value"] = value
    elif kind == "discount":
        total = _parse_cents(form.get("total_price"), "Promotion price")
        if not total or total <= 0:
            raise ValidationError("Promotion price must be greater than 0")
        data["total_price_cents"] = total

    data["buy_quantity"], data["pay_quantity"] = BUY_PAY_QUANTITIES.get(kind, (1, 1))

    product_ids = []
    for raw in form.getlist("product_ids") if hasattr(form, "getlist") else form.get("product_ids", []):
        try:
            product_ids.append(int(raw))
        except (TypeError, ValueError):
            continue
    if not product_ids:
        raise ValidationError("Select at least one product")
    return data, product_ids


def save_promotion(db, data, product_ids, promotion=None):
    products = db.execute(select(Product).where(Product.id.in_(product_ids))).scalars().all()
    if not products:
        raise ValidationError("Select at least one product")
    if promotion is None:
        promotion = Promotion()
        db.add(promotion)
    for key, value in data.items():
        setattr(promotion, key, value)
    # associations are replaced wholesale on edit
    promotion.products = list(products)
    db.commit()
    log.info(f"Saved promotion #{promotion.id} ({promotion.type}) for {len(products)} products")
    return promotion


def toggle_promotion(db, promotion_id):
    promo = db.get(Promotion, promotion_id)
    if promo is None:
        raise ValidationError("Promotion not found")
    promo.active = not promo.active
    db.commit()
    return promo
