import logging

from flask import Blueprint, abort, flash, redirect, render_template, request, session, url_for
from flask_login import current_user, login_required

from . import cart as carts
from .catalog import SORT_OPTIONS, categories, search_products
from .checkout import CheckoutResult, place_order
from .company import get_settings
from .database import db_session
from .errors import CheckoutError, ValidationError
from .models import Product
from .notify import notify
from .reviews import approved_reviews, average_rating, can_review, has_reviewed, ratings_by_product, submit_review

log = logging.getLogger(__name__)

bp = Blueprint("shop", __name__)

CHECKOUT_FORM_KEY = "checkout_form_v1"

PAYMENT_STATUS_PAGES = {
    "approved": ("Payment successful!", "Your payment was processed. You will be redirected to the store shortly.", "success"),
    "rejected": ("Payment rejected", "Sorry, your payment could not be processed. Please try again.", "danger"),
    "pending": ("Payment pending", "Your payment is being processed. We will let you know once it is confirmed.", "warning"),
    "pending_cod": ("Order placed!", "Your order was placed. You will pay in cash on delivery.", "success"),
}


def _current_user_or_none():
    return current_user if current_user.is_authenticated else None


# --------------------------- CATALOG ---------------------------
@bp.get("/")
def index():
    term = request.args.get("q", "").strip()
    category = request.args.get("category", "").strip()
    sort = request.args.get("sort", "newest")
    if sort not in SORT_OPTIONS:
        sort = "newest"
    with db_session() as db:
        products = search_products(db, term, category, sort)
        ratings = ratings_by_product(db, [p.id for p in products])
        cats = categories(db)
        settings = get_settings(db)
    return render_template(
        "index.html", products=products, ratings=ratings, categories=cats, settings=settings,
        q=term, category=category, sort=sort,
    )


@bp.get("/product/<int:pid>")
def product(pid):
    with db_session() as db:
        p = db.get(Product, pid)
        if not p:
            abort(404)
        reviews = approved_reviews(db, pid)
        user = _current_user_or_none()
        eligible = user is not None and can_review(db, int(user.id), pid)
        reviewed = user is not None and has_reviewed(db, int(user.id), pid)
    return render_template(
        "product.html", p=p, reviews=reviews,
        average=average_rating(r.rating for r in reviews),
        can_review=eligible, reviewed=reviewed,
    )


@bp.post("/product/<int:pid>/reviews")
@login_required
def review_post(pid):
    with db_session() as db:
        if not db.get(Product, pid):
            abort(404)
        try:
            submit_review(db, current_user, pid, request.form.get("rating"), request.form.get("comment"))
        except ValidationError as e:
            flash(str(e), "danger")
        else:
            flash("Your review was submitted and is awaiting approval.", "success")
    return redirect(url_for("shop.product", pid=pid))


# --------------------------- CART ---------------------------
@bp.post("/cart/add")
def cart_add():
    pid = request.form.get("product_id", type=int)
    qty = max(1, request.form.get("quantity", type=int, default=1))
    color = request.form.get("color") or None
    if not pid:
        abort(400)
    with db_session() as db:
        p = db.get(Product, pid)
        if not p:
            abort(404)
        cart = carts.load_cart(db)
        try:
            cart.add(p, qty, color)
        except ValidationError as e:
            flash(str(e), "warning")
            return redirect(url_for("shop.product", pid=pid))
        carts.save_cart(cart, db)
    flash("Added to cart.", "success")
    return redirect(url_for("shop.cart_view"))


@bp.get("/cart")
def cart_view():
    with db_session() as db:
        cart = carts.load_cart(db)
    # persist the rehydrated cart so vanished products drop out of the session too
    carts.save_cart(cart)
    return render_template("cart.html", cart=cart)


@bp.post("/cart/update")
def cart_update():
    try:
        with db_session() as db:
            cart = carts.load_cart(db)
            for line in list(cart):
                field = f"qty_{line.product_id}_{line.selected_color or ''}"
                if field in request.form:
                    cart.update_quantity(line.product_id, int(request.form.get(field) or 0), line.selected_color)
            carts.save_cart(cart, db)
    except ValidationError as e:
        flash(str(e), "warning")
    except ValueError:
        flash("Quantities must be whole numbers.", "warning")
    else:
        flash("Cart updated.", "success")
    return redirect(url_for("shop.cart_view"))


@bp.post("/cart/remove")
def cart_remove():
    if "line" in request.form:
        raw_pid, _, color = request.form["line"].partition(":")
        pid = int(raw_pid) if raw_pid.isdigit() else None
    else:
        pid = request.form.get("product_id", type=int)
        color = request.form.get("color")
    if not pid:
        abort(400)
    color = color or None
    with db_session() as db:
        cart = carts.load_cart(db)
        cart.remove(pid, color)
        carts.save_cart(cart, db)
    return redirect(url_for("shop.cart_view"))


@bp.post("/cart/clear")
def cart_clear():
    with db_session() as db:
        cart = carts.load_cart(db)
        cart.clear()
        carts.save_cart(cart, db)
    return redirect(url_for("shop.cart_view"))


@bp.get("/cart/recover")
@login_required
def recover_get():
    return render_template("recover.html")


@bp.post("/cart/recover")
@login_required
def recover_post():
    with db_session() as db:
        cart = carts.restore_snapshot(db, int(current_user.id))
    if cart is None:
        flash("No snapshot found.", "warning")
    else:
        flash("Cart recovered.", "success")
    return redirect(url_for("shop.cart_view"))


# --------------------------- CHECKOUT ---------------------------
@bp.get("/checkout")
def checkout_get():
    with db_session() as db:
        cart = carts.load_cart(db)
    if cart.is_empty:
        flash("Cart is empty.", "warning")
        return redirect(url_for("shop.index"))
    form = session.get(CHECKOUT_FORM_KEY) or {}
    if current_user.is_authenticated and not form.get("full_name"):
        form = {**form, "full_name": current_user.full_name, "email": current_user.email}
    return render_template("checkout.html", cart=cart, form=form, methods=cart.payment_methods())


@bp.post("/checkout")
def checkout_post():
    form = request.form
    # keep what was typed so a failed attempt does not wipe the form
    session[CHECKOUT_FORM_KEY] = {k: v for k, v in form.items() if k != "payment_method"}
    try:
        with db_session() as db:
            cart = carts.load_cart(db)
            result: CheckoutResult = place_order(db, cart, form, user=_current_user_or_none())
            if result.payment_method == "cash_on_delivery":
                carts.save_cart(cart, db)
                session.pop(CHECKOUT_FORM_KEY, None)
                if result.notification_sent is False:
                    flash("Order placed, but we could not send the email notification.", "warning")
    except CheckoutError as e:
        flash(str(e), "danger")
        return redirect(url_for("shop.checkout_get"))
    except Exception as e:
        log.exception("Checkout failed")
        notify(f"Checkout failed: {e}")
        flash("Error processing the order.", "danger")
        return redirect(url_for("shop.checkout_get"))
    return redirect(result.redirect_url, code=303)


@bp.get("/payment/status")
def payment_status():
    status = request.args.get("status", "")
    order_id = request.args.get("order_id", type=int)
    title, message, tone = PAYMENT_STATUS_PAGES.get(
        status, ("Unknown status", "We could not determine the status of your payment.", "secondary")
    )
    if status == "approved":
        carts.save_cart(carts.Cart())
        session.pop(CHECKOUT_FORM_KEY, None)
    return render_template(
        "payment_status.html", status=status, order_id=order_id, title=title, message=message, tone=tone,
    )
