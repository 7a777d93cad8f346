import logging

from sqlalchemy import select, delete
from sqlalchemy.orm import selectinload

from .errors import ValidationError
from .models import Order, OrderItem, ORDER_STATUSES, PAYMENT_STATUSES

log = logging.getLogger(__name__)

STATUS_LABELS = {
    "pending": "Pending",
    "processing": "Processing",
    "shipped": "Shipped",
    "delivered": "Delivered",
    "cancelled": "Cancelled",
}

PAYMENT_STATUS_LABELS = {
    "pending": "Pending",
    "pending_cod": "Cash on delivery",
    "paid": "Paid",
    "failed": "Failed",
}

PAYMENT_METHOD_LABELS = {
    "cash_on_delivery": "Cash on delivery",
    "card": "Card (online)",
}


def list_orders(db, status=None):
    query = select(Order).options(selectinload(Order.user)).order_by(Order.created_at.desc(), Order.id.desc())
    if status:
        query = query.where(Order.status == status)
    return db.execute(query).scalars().all()


def get_order(db, order_id):
    return db.execute(
        select(Order)
        .options(selectinload(Order.items), selectinload(Order.user))
        .where(Order.id == order_id)
    ).scalar_one_or_none()


def update_status(db, order_id, status=None, payment_status=None):
    if status is not None and status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid order status: {status}")
    if payment_status is not None and payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status: {payment_status}")
    order = db.get(Order, order_id)
    if order is None:
        raise ValidationError("Order not found")
    if status is not None:
        order.status = status
    if payment_status is not None:
        order.payment_status = payment_status
    db.commit()
    log.info(f"Order #{order_id} -> status={order.status} payment_status={order.payment_status}")
    return order


def delete_orders(db, order_ids) -> int:
    """Delete orders and their items; returns how many orders were removed."""
    ids = [int(i) for i in order_ids]
    if not ids:
        return 0
    db.execute(delete(OrderItem).where(OrderItem.order_id.in_(ids)))
    result = db.execute(delete(Order).where(Order.id.in_(ids)))
    db.commit()
    log.info(f"Deleted orders {ids}")
    return result.rowcount or 0
