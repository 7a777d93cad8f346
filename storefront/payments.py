"""Payment intents on Stripe Checkout and the gateway webhook."""
import logging

import stripe
from flask import Blueprint, current_app, jsonify, request, url_for

from .company import award_points
from .database import db_session
from .errors import PaymentError, ValidationError
from .models import Order
from .notify import notify, send_order_notification

log = logging.getLogger(__name__)

bp = Blueprint("payments", __name__)

DEFAULT_CATEGORY = "others"


def _status_url(status, order_id):
    base = current_app.config["PUBLIC_BASE_URL"].rstrip("/")
    return f"{base}/payment/status?status={status}&order_id={order_id}"


def validate_payment_request(order_id, items, total_cents):
    if not order_id:
        raise ValidationError("orderId is required")
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    if isinstance(total_cents, bool) or not isinstance(total_cents, (int, float)) or total_cents <= 0:
        raise ValidationError("total must be a positive number")
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("every item must be an object")
        try:
            if int(item.get("quantity", 0)) <= 0 or int(item.get("product_price", -1)) < 0:
                raise ValidationError("every item needs a positive quantity and a price")
        except (TypeError, ValueError):
            raise ValidationError("every item needs a positive quantity and a price")


def build_line_items(items, currency):
    line_items = []
    for item in items:
        name = str(item.get("product_name") or f"Item {item.get('product_id')}")
        image = str(item.get("product_image_url") or "")
        line_items.append({
            "quantity": int(item["quantity"]),
            "price_data": {
                "currency": currency.lower(),
                "unit_amount": int(item["product_price"]),
                "product_data": {
                    "name": name,
                    "description": str(item.get("product_description") or name)[:200],
                    "images": [image] if image.startswith(("http://", "https://")) else [],
                    "metadata": {
                        "product_id": str(item.get("product_id")),
                        "category": str(item.get("product_category") or DEFAULT_CATEGORY),
                    },
                },
            },
        })
    return line_items


def create_preference(order_id, items, total_cents, payer_email=None):
    """Create a checkout session for an order; returns its redirect URL and id.

    ``items`` are dicts with ``product_id``, ``product_name``,
    ``product_description``, ``product_image_url``, ``product_category``,
    ``product_price`` (cents) and ``quantity``.
    """
    validate_payment_request(order_id, items, total_cents)
    cfg = current_app.config
    if not cfg.get("STRIPE_SECRET_KEY"):
        log.error("Configuration error: STRIPE_SECRET_KEY not configured")
        raise PaymentError("STRIPE_SECRET_KEY not configured")

    params = {
        "api_key": cfg["STRIPE_SECRET_KEY"],
        "mode": "payment",
        "line_items": build_line_items(items, cfg["CURRENCY"]),
        "success_url": _status_url("approved", order_id),
        "cancel_url": _status_url("rejected", order_id),
        "client_reference_id": str(order_id),
        "metadata": {"order_id": str(order_id)},
    }
    if payer_email:
        params["customer_email"] = payer_email

    log.info(f"Creating checkout session for order {order_id} ({len(items)} items, {total_cents} cents)")
    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        log.error(f"Stripe checkout create failed for order {order_id}: {e}")
        raise PaymentError(str(e)) from e

    session_id = getattr(session, "id", None)
    session_url = getattr(session, "url", None)
    if not session_id or not session_url:
        log.error(f"Invalid or incomplete checkout session for order {order_id}: {session!r}")
        raise PaymentError("Payment gateway returned an incomplete response")
    log.info(f"Checkout session created for order {order_id}: {session_id}")
    return {"init_point": session_url, "preference_id": session_id}


# --------------------------- function endpoint ---------------------------

def _cors(response):
    response.headers["Access-Control-Allow-Origin"] = current_app.config["CORS_ALLOW_ORIGIN"]
    response.headers["Access-Control-Allow-Methods"] = "POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "authorization, x-client-info, apikey, content-type"
    return response


@bp.route("/functions/v1/create-payment", methods=["POST", "OPTIONS"])
def create_payment_function():
    if request.method == "OPTIONS":
        return _cors(current_app.response_class(status=204))

    body = request.get_json(silent=True) or {}
    try:
        result = create_preference(
            body.get("orderId"), body.get("items"), body.get("total"), body.get("payer_email")
        )
    except ValidationError as e:
        log.error(f"Validation error in create-payment: {e}")
        return _cors(jsonify({"error": f"Missing or invalid required parameters: {e}"})), 400
    except Exception:
        log.exception("Error in create-payment function")
        return _cors(jsonify({
            "error": "An unexpected error occurred while creating the payment preference."
        })), 500
    return _cors(jsonify({"success": True, **result})), 200


# --------------------------- webhook ---------------------------

def _order_from_event(db, data):
    raw = (data.get("metadata") or {}).get("order_id") or data.get("client_reference_id")
    try:
        return db.get(Order, int(raw))
    except (TypeError, ValueError):
        return None


@bp.post("/webhooks/stripe")
def stripe_webhook():
    payload = request.get_data(as_text=True)
    sig = request.headers.get("Stripe-Signature", "")
    try:
        event = stripe.Webhook.construct_event(payload, sig, current_app.config["STRIPE_WEBHOOK_SECRET"])
    except (ValueError, stripe.SignatureVerificationError) as e:
        log.warning(f"Stripe webhook signature failure: {e}")
        return "bad sig", 400

    try:
        _handle_event(event)
        return "ok", 200
    except Exception as e:
        log.exception("Stripe webhook error")
        notify(f"Stripe webhook error: {e}")
        return "error", 500


def _handle_event(event):
    kind = event["type"]
    data = event["data"]["object"]
    with db_session() as db:
        order = _order_from_event(db, data)
        if order is None:
            log.info(f"Stripe webhook {kind} without a known order")
            return
        if kind == "checkout.session.completed":
            if order.payment_status != "paid":
                order.payment_status = "paid"
                if order.status == "pending":
                    order.status = "processing"
                order.payment_reference = data.get("id") or order.payment_reference
                db.commit()
                award_points(db, order.user_id, order.total_cents)
                send_order_notification(order)
                notify(f"Order #{order.id} paid")
        elif kind in ("checkout.session.expired", "checkout.session.async_payment_failed"):
            order.payment_status = "failed"
            db.commit()
            log.info(f"Order #{order.id} payment failed ({kind})")


def payment_status_url(status, order_id):
    return url_for("shop.payment_status", status=status, order_id=order_id)
