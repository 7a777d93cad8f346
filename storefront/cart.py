"""Shopping cart kept in the Flask session.

The session only stores ``{product_id, quantity, selected_color}`` per line.
Names, prices and images are refreshed from the products table whenever the
cart is loaded, and the running total is recomputed after every mutation.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from flask import session
from flask_login import current_user
from sqlalchemy import select

from .errors import ValidationError
from .models import CartSnapshot, Product, default_payment_methods
from .promotions import AppliedPromotion, active_promotions, find_promotion, line_total

log = logging.getLogger(__name__)

SESSION_KEY = "cart_v2"


@dataclass
class CartLine:
    product_id: int
    name: str
    price_cents: int
    quantity: int
    image: str = ""
    selected_color: Optional[str] = None
    stock: Optional[int] = None
    payment_methods: dict = field(default_factory=default_payment_methods)
    promotion: Optional[AppliedPromotion] = None

    @classmethod
    def from_product(cls, product: Product, quantity: int, color=None) -> "CartLine":
        return cls(
            product_id=product.id,
            name=product.name,
            price_cents=product.price_cents,
            quantity=quantity,
            image=product.image_for_color(color) if color else product.main_image(),
            selected_color=color or None,
            stock=product.stock,
            payment_methods=product.payment_methods(),
        )

    @property
    def key(self):
        return (self.product_id, self.selected_color or None)

    @property
    def total_cents(self) -> int:
        return line_total(self.price_cents, self.quantity, self.promotion)

    @property
    def full_price_cents(self) -> int:
        return self.price_cents * self.quantity


class Cart:
    def __init__(self, lines=None):
        self.lines = list(lines or [])
        self.total_cents = 0
        self._recalculate()

    def __iter__(self):
        return iter(self.lines)

    def __len__(self):
        return len(self.lines)

    @property
    def count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def savings_cents(self) -> int:
        return sum(line.full_price_cents for line in self.lines) - self.total_cents

    def _find(self, product_id, color=None):
        key = (product_id, color or None)
        for idx, line in enumerate(self.lines):
            if line.key == key:
                return idx
        return None

    def product_quantity(self, product_id, skip=None) -> int:
        """Units of a product across all its color lines, optionally leaving one line out."""
        return sum(line.quantity for idx, line in enumerate(self.lines)
                   if line.product_id == product_id and idx != skip)

    def _recalculate(self):
        self.total_cents = sum(line.total_cents for line in self.lines)

    def add(self, product: Product, quantity: int = 1, color=None):
        if quantity <= 0:
            raise ValidationError("Quantity must be at least 1")
        if color and product.available_colors and color not in product.available_colors:
            raise ValidationError(f"Color {color} is not available for {product.name}")
        idx = self._find(product.id, color)
        if product.stock is not None and self.product_quantity(product.id) + quantity > product.stock:
            raise ValidationError(f"Only {product.stock} units of {product.name} in stock")
        if idx is None:
            self.lines.append(CartLine.from_product(product, quantity, color))
        else:
            self.lines[idx].quantity += quantity
        self._recalculate()

    def update_quantity(self, product_id, quantity: int, color=None):
        idx = self._find(product_id, color)
        if idx is None:
            return
        if quantity <= 0:
            del self.lines[idx]
        else:
            line = self.lines[idx]
            if line.stock is not None and self.product_quantity(product_id, skip=idx) + quantity > line.stock:
                raise ValidationError(f"Only {line.stock} units of {line.name} in stock")
            line.quantity = quantity
        self._recalculate()

    def remove(self, product_id, color=None):
        idx = self._find(product_id, color)
        if idx is not None:
            del self.lines[idx]
            self._recalculate()

    def clear(self):
        self.lines = []
        self._recalculate()

    def apply_promotions(self, rules):
        """Attach the first applicable promotion to every line, or none."""
        for line in self.lines:
            line.promotion = find_promotion(rules, line.product_id)
        self._recalculate()

    def payment_methods(self) -> dict:
        # a method is offered only when every product in the cart allows it
        return {
            "cash_on_delivery": all(l.payment_methods.get("cash_on_delivery", True) for l in self.lines),
            "card": all(l.payment_methods.get("card", True) for l in self.lines),
        }

    def refresh(self, products_by_id):
        """Re-read product data; lines whose product disappeared are dropped."""
        fresh = []
        for line in self.lines:
            product = products_by_id.get(line.product_id)
            if product is None:
                log.info(f"Dropping cart line for missing product {line.product_id}")
                continue
            promotion = line.promotion
            line = CartLine.from_product(product, line.quantity, line.selected_color)
            line.promotion = promotion
            fresh.append(line)
        self.lines = fresh
        self._recalculate()

    def to_session(self):
        return [
            {"product_id": l.product_id, "quantity": l.quantity, "selected_color": l.selected_color}
            for l in self.lines
        ]

    @classmethod
    def from_session(cls, entries, products_by_id):
        lines = []
        for entry in entries or []:
            try:
                pid = int(entry["product_id"])
                qty = int(entry["quantity"])
            except (KeyError, TypeError, ValueError):
                continue
            product = products_by_id.get(pid)
            if product is None or qty <= 0:
                continue
            lines.append(CartLine.from_product(product, qty, entry.get("selected_color")))
        return cls(lines)


# --------------------------- session persistence ---------------------------

def _products_for(db, entries):
    ids = set()
    for entry in entries or []:
        try:
            ids.add(int(entry["product_id"]))
        except (KeyError, TypeError, ValueError):
            continue
    if not ids:
        return {}
    rows = db.execute(select(Product).where(Product.id.in_(ids))).scalars().all()
    return {p.id: p for p in rows}


def load_cart(db, entries=None) -> Cart:
    """Rehydrate the cart from the session (or the given entries)."""
    if entries is None:
        entries = session.get(SESSION_KEY, [])
    cart = Cart.from_session(entries, _products_for(db, entries))
    cart.apply_promotions(active_promotions(db))
    return cart


def save_cart(cart: Cart, db=None):
    payload = cart.to_session()
    session[SESSION_KEY] = payload
    if db is not None and current_user.is_authenticated:
        db.add(CartSnapshot(user_id=int(current_user.id), json_payload=json.dumps({"items": payload})))
        db.commit()


def restore_snapshot(db, user_id) -> Optional[Cart]:
    snap = db.execute(
        select(CartSnapshot)
        .where(CartSnapshot.user_id == user_id)
        .order_by(CartSnapshot.created_at.desc(), CartSnapshot.id.desc())
    ).scalars().first()
    if not snap:
        return None
    data = json.loads(snap.json_payload)
    cart = load_cart(db, data.get("items", []))
    session[SESSION_KEY] = cart.to_session()
    return cart


def cart_quantity() -> int:
    entries = session.get(SESSION_KEY, [])
    total = 0
    for entry in entries:
        try:
            total += int(entry.get("quantity", 0))
        except (TypeError, ValueError):
            continue
    return total
