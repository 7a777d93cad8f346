"""Order placement: order row, order items, then payment link or cash on delivery.

Each step is committed on its own, so a failure after the order row exists
removes that order again instead of leaving an orphan behind.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from .company import award_points
from .errors import CheckoutError, PaymentError, ValidationError
from .models import Order, OrderItem, Product, PAYMENT_METHODS
from .notify import notify, send_order_notification
from .payments import create_preference, payment_status_url
from .promotions import active_promotions

log = logging.getLogger(__name__)

REQUIRED_FIELDS = {
    "full_name": "Full name",
    "email": "Email",
    "phone": "Phone",
    "address": "Address",
    "city": "City",
    "postal_code": "Postal code",
    "country": "Country",
}


@dataclass
class CheckoutResult:
    order_id: int
    redirect_url: str
    payment_method: str
    notification_sent: Optional[bool] = None
    points_awarded: int = 0


def validate_shipping(form) -> dict:
    data = {key: (form.get(key) or "").strip() for key in REQUIRED_FIELDS}
    missing = [label for key, label in REQUIRED_FIELDS.items() if not data[key]]
    if missing:
        raise CheckoutError(f"Please fill in: {', '.join(missing)}")
    if "@" not in data["email"]:
        raise CheckoutError("Please enter a valid email address")
    return data


def _refresh(db, cart):
    ids = [line.product_id for line in cart]
    rows = db.execute(select(Product).where(Product.id.in_(ids))).scalars().all() if ids else []
    cart.refresh({p.id: p for p in rows})
    cart.apply_promotions(active_promotions(db))


def _payment_items(cart):
    items = []
    for line in cart:
        name = line.name + (f" ({line.selected_color})" if line.selected_color else "")
        # promotions are folded into the unit price the gateway charges
        if line.total_cents % line.quantity == 0:
            unit, quantity = line.total_cents // line.quantity, line.quantity
        else:
            unit, quantity = line.total_cents, 1
            name = f"{name} x{line.quantity}"
        items.append({
            "product_id": line.product_id,
            "product_name": name,
            "product_description": line.name,
            "product_image_url": line.image,
            "product_category": "others",
            "product_price": unit,
            "quantity": quantity,
        })
    return items


def _delete_order(db, order_id, reason):
    try:
        order = db.get(Order, order_id)
        if order is not None:
            db.delete(order)
            db.commit()
        log.warning(f"Deleted orphaned order #{order_id}: {reason}")
    except SQLAlchemyError:
        db.rollback()
        log.exception(f"Could not delete orphaned order #{order_id}")
        notify(f"Orphaned order #{order_id} could not be deleted: {reason}")


def place_order(db, cart, form, user=None) -> CheckoutResult:
    """Create the order for ``cart`` and start its payment.

    ``user`` is the logged-in user or None for a guest checkout. The cart is
    cleared only once the order is final (cash on delivery); for card payments
    the payment status page clears it after approval.
    """
    if cart.is_empty or cart.total_cents <= 0:
        raise CheckoutError("Your cart is empty or its total is invalid. Please review your cart.")

    shipping = validate_shipping(form)
    method = (form.get("payment_method") or "").strip()
    if method not in PAYMENT_METHODS:
        raise CheckoutError("Please choose a payment method")

    _refresh(db, cart)
    if cart.is_empty:
        raise CheckoutError("The products in your cart are no longer available.")
    if not cart.payment_methods().get(method):
        raise CheckoutError("That payment method is not available for every product in your cart")
    for line in cart:
        if line.stock is not None and cart.product_quantity(line.product_id) > line.stock:
            raise CheckoutError(f"Only {line.stock} units of {line.name} in stock")

    total = cart.total_cents
    order = Order(
        user_id=int(user.id) if user is not None else None,
        is_guest=user is None,
        guest_info=None if user is not None else {
            "full_name": shipping["full_name"], "email": shipping["email"], "phone": shipping["phone"],
        },
        shipping_address={k: shipping[k] for k in ("full_name", "address", "city", "postal_code", "country", "phone")},
        payment_method=method,
        total_cents=total,
        status="pending",
        payment_status="pending",
    )
    try:
        db.add(order)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.exception("Order insert failed")
        raise CheckoutError("Could not create the order") from e
    order_id = order.id
    log.info(f"Order #{order_id} created ({method}, {total} cents, guest={order.is_guest})")

    try:
        for line in cart:
            db.add(OrderItem(
                order_id=order_id,
                product_id=line.product_id,
                product_name=line.name,
                quantity=line.quantity,
                price_at_time_cents=line.price_cents,
                selected_color=line.selected_color,
            ))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        _delete_order(db, order_id, f"order items insert failed: {e}")
        raise CheckoutError("Could not create the order items") from e

    if method == "card":
        try:
            pref = create_preference(order_id, _payment_items(cart), total, payer_email=shipping["email"])
        except (PaymentError, ValidationError) as e:
            _delete_order(db, order_id, f"payment preference failed: {e}")
            notify(f"Payment link creation failed for order #{order_id}: {e}")
            raise CheckoutError("Could not create the payment link. Please try again.") from e
        order.payment_url = pref["init_point"]
        order.payment_reference = pref["preference_id"]
        try:
            db.commit()
        except SQLAlchemyError as e:
            # the checkout session exists; the webhook finds the order through its metadata
            db.rollback()
            log.exception(f"Could not store the payment link for order #{order_id}")
            notify(f"Payment link for order #{order_id} not saved: {e}")
        return CheckoutResult(order_id=order_id, redirect_url=pref["init_point"], payment_method=method)

    order.status = "processing"
    order.payment_status = "pending_cod"
    db.commit()
    sent = send_order_notification(order)
    points = award_points(db, order.user_id, total)
    cart.clear()
    return CheckoutResult(
        order_id=order_id,
        redirect_url=payment_status_url("pending_cod", order_id),
        payment_method=method,
        notification_sent=sent,
        points_awarded=points,
    )
