import logging

from flask import Blueprint, abort, flash, jsonify, redirect, render_template, request, url_for
from flask_login import current_user
from sqlalchemy import select, update
from sqlalchemy.orm import selectinload

from . import orders as order_service
from . import reviews as review_service
from .auth import admin_required, is_safe_url, roles_required
from .company import get_loyalty, get_settings, update_loyalty, update_settings
from .database import db_session
from .errors import ValidationError
from .models import OrderItem, Product, Promotion, Review, User, ROLES, ORDER_STATUSES, PAYMENT_STATUSES
from .products import (
    IMAGE_EXTENSIONS, DOCUMENT_EXTENSIONS, discard_uploads, save_product, store_upload, validate_product_form,
)
from .promotions import PROMOTION_TYPES, TYPE_LABELS, is_active, save_promotion, toggle_promotion, validate_promotion_form

log = logging.getLogger(__name__)

bp = Blueprint("admin", __name__, url_prefix="/admin")

staff_required = roles_required("admin", "fulfillment")


@bp.get("/")
@staff_required
def dashboard():
    if current_user.role == "fulfillment":
        return redirect(url_for("admin.orders"))
    return redirect(url_for("admin.products"))


# --------------------------- PRODUCTS ---------------------------
@bp.get("/products")
@admin_required
def products():
    with db_session() as db:
        rows = db.execute(select(Product).order_by(Product.created_at.desc(), Product.id.desc())).scalars().all()
    return render_template("admin/products.html", products=rows)


def _store_uploads():
    """Save uploaded images and instructions file; nothing is kept if one is rejected."""
    stored = []
    try:
        for f in request.files.getlist("image_files"):
            if f and f.filename:
                stored.append(store_upload(f, IMAGE_EXTENSIONS))
        images = list(stored)
        f = request.files.get("instructions_file")
        instructions = None
        if f and f.filename:
            instructions = store_upload(f, DOCUMENT_EXTENSIONS)
            stored.append(instructions)
    except ValidationError:
        discard_uploads(stored)
        raise
    return images, instructions


@bp.route("/products/new", methods=["GET", "POST"])
@admin_required
def product_new():
    if request.method == "GET":
        return render_template("admin/product_form.html", p=None, form={})
    images, instructions = [], None
    try:
        images, instructions = _store_uploads()
        data = validate_product_form(request.form, images)
        with db_session() as db:
            p = save_product(db, data, instructions_file=instructions)
    except ValidationError as e:
        discard_uploads(images + [instructions])
        return (render_template("admin/product_form.html", p=None, form=request.form, error=str(e)), 400)
    flash(f"Product {p.name} created.", "success")
    return redirect(url_for("admin.products"))


@bp.route("/products/<int:pid>/edit", methods=["GET", "POST"])
@admin_required
def product_edit(pid):
    with db_session() as db:
        p = db.get(Product, pid)
        if not p:
            abort(404)
        if request.method == "GET":
            return render_template("admin/product_form.html", p=p, form={})
        images, instructions = [], None
        try:
            images, instructions = _store_uploads()
            data = validate_product_form(request.form, images)
            save_product(db, data, product=p, instructions_file=instructions)
        except ValidationError as e:
            db.rollback()
            discard_uploads(images + [instructions])
            return (render_template("admin/product_form.html", p=p, form=request.form, error=str(e)), 400)
    flash(f"Product {p.name} updated.", "success")
    return redirect(url_for("admin.products"))


@bp.post("/products/<int:pid>/delete")
@admin_required
def product_delete(pid):
    with db_session() as db:
        p = db.get(Product, pid)
        if not p:
            abort(404)
        # order history keeps the item name
        db.execute(update(OrderItem).where(OrderItem.product_id == pid).values(product_id=None))
        db.delete(p)
        db.commit()
    log.info(f"Deleted product #{pid}")
    flash("Product deleted.", "success")
    return redirect(url_for("admin.products"))


# --------------------------- ORDERS ---------------------------
@bp.get("/orders")
@staff_required
def orders():
    status = request.args.get("status") or None
    if status and status not in ORDER_STATUSES:
        abort(400)
    with db_session() as db:
        rows = order_service.list_orders(db, status)
        return render_template(
            "admin/orders.html", orders=rows, status=status, statuses=ORDER_STATUSES,
            labels=order_service.STATUS_LABELS, payment_labels=order_service.PAYMENT_STATUS_LABELS,
        )


@bp.get("/orders/<int:order_id>")
@staff_required
def order_detail(order_id):
    with db_session() as db:
        order = order_service.get_order(db, order_id)
        if not order:
            abort(404)
        return render_template(
            "admin/order_detail.html", order=order, statuses=ORDER_STATUSES, payment_statuses=PAYMENT_STATUSES,
            labels=order_service.STATUS_LABELS, payment_labels=order_service.PAYMENT_STATUS_LABELS,
            method_labels=order_service.PAYMENT_METHOD_LABELS,
        )


@bp.post("/orders/<int:order_id>/status")
@staff_required
def order_status(order_id):
    try:
        with db_session() as db:
            order_service.update_status(
                db, order_id,
                status=request.form.get("status") or None,
                payment_status=request.form.get("payment_status") or None,
            )
    except ValidationError as e:
        flash(str(e), "danger")
        return redirect(url_for("admin.order_detail", order_id=order_id))
    flash("Order status updated.", "success")
    next_url = request.form.get("next")
    if next_url and is_safe_url(next_url):
        return redirect(next_url)
    return redirect(url_for("admin.order_detail", order_id=order_id))


@bp.post("/orders/<int:order_id>/delete")
@staff_required
def order_delete(order_id):
    with db_session() as db:
        removed = order_service.delete_orders(db, [order_id])
    if not removed:
        abort(404)
    flash(f"Order #{order_id} deleted.", "success")
    return redirect(url_for("admin.orders"))


@bp.post("/orders/delete")
@staff_required
def orders_bulk_delete():
    ids = request.form.getlist("order_ids", type=int)
    if not ids:
        flash("No orders selected.", "warning")
        return redirect(url_for("admin.orders"))
    with db_session() as db:
        removed = order_service.delete_orders(db, ids)
    flash(f"{removed} orders deleted.", "success")
    return redirect(url_for("admin.orders"))


# --------------------------- USERS ---------------------------
def _user_dict(u):
    return {
        "id": u.id,
        "email": u.email,
        "full_name": u.full_name,
        "role": u.role,
        "points": u.points,
        "created_at": u.created_at.isoformat() if u.created_at else None,
        "last_sign_in": u.last_sign_in.isoformat() if u.last_sign_in else None,
    }


def _set_role(db, user_id, role):
    if role not in ROLES:
        raise ValidationError(f"Invalid role: {role}")
    u = db.get(User, user_id)
    if u is None:
        raise ValidationError("User not found")
    if u.id == int(current_user.id) and role != "admin":
        raise ValidationError("You cannot remove your own admin role")
    u.role = role
    db.commit()
    log.info(f"User {u.email} role -> {role}")
    return u


@bp.get("/users")
@admin_required
def users():
    with db_session() as db:
        rows = db.execute(select(User).order_by(User.created_at.desc(), User.id.desc())).scalars().all()
    return render_template("admin/users.html", users=rows, roles=ROLES)


@bp.post("/users/<int:user_id>/role")
@admin_required
def user_role(user_id):
    try:
        with db_session() as db:
            _set_role(db, user_id, request.form.get("role", ""))
    except ValidationError as e:
        flash(str(e), "danger")
    else:
        flash("Role updated.", "success")
    return redirect(url_for("admin.users"))


@bp.route("/api/users", methods=["GET", "PUT"])
@admin_required
def users_api():
    with db_session() as db:
        if request.method == "GET":
            rows = db.execute(select(User).order_by(User.created_at.desc(), User.id.desc())).scalars().all()
            return jsonify({"users": [_user_dict(u) for u in rows]})
        body = request.get_json(silent=True) or {}
        try:
            u = _set_role(db, int(body.get("userId", 0)), body.get("newRole", ""))
        except (TypeError, ValueError):
            return jsonify({"error": "userId must be an integer"}), 400
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400
        return jsonify({"user": _user_dict(u)})


# --------------------------- PROMOTIONS ---------------------------
def _promotion_form_context(db, promo=None, form=None, error=None):
    all_products = db.execute(select(Product).order_by(Product.name)).scalars().all()
    selected = set()
    if form:
        selected = {int(x) for x in form.getlist("product_ids") if x.isdigit()}
    elif promo is not None:
        selected = {p.id for p in promo.products}
    return dict(promo=promo, form=form or {}, products=all_products, selected=selected,
                types=PROMOTION_TYPES, type_labels=TYPE_LABELS, error=error)


@bp.get("/promotions")
@admin_required
def promotions():
    with db_session() as db:
        rows = db.execute(
            select(Promotion).options(selectinload(Promotion.products))
            .order_by(Promotion.created_at.desc(), Promotion.id.desc())
        ).scalars().all()
        return render_template("admin/promotions.html", promotions=rows, type_labels=TYPE_LABELS, is_active=is_active)


@bp.route("/promotions/new", methods=["GET", "POST"])
@admin_required
def promotion_new():
    with db_session() as db:
        if request.method == "GET":
            return render_template("admin/promotion_form.html", **_promotion_form_context(db))
        try:
            data, product_ids = validate_promotion_form(request.form)
            save_promotion(db, data, product_ids)
        except ValidationError as e:
            db.rollback()
            return (render_template("admin/promotion_form.html",
                                    **_promotion_form_context(db, form=request.form, error=str(e))), 400)
    flash("Promotion created.", "success")
    return redirect(url_for("admin.promotions"))


@bp.route("/promotions/<int:promo_id>/edit", methods=["GET", "POST"])
@admin_required
def promotion_edit(promo_id):
    with db_session() as db:
        promo = db.get(Promotion, promo_id)
        if not promo:
            abort(404)
        if request.method == "GET":
            return render_template("admin/promotion_form.html", **_promotion_form_context(db, promo))
        try:
            data, product_ids = validate_promotion_form(request.form)
            save_promotion(db, data, product_ids, promotion=promo)
        except ValidationError as e:
            db.rollback()
            return (render_template("admin/promotion_form.html",
                                    **_promotion_form_context(db, promo, form=request.form, error=str(e))), 400)
    flash("Promotion updated.", "success")
    return redirect(url_for("admin.promotions"))


@bp.post("/promotions/<int:promo_id>/toggle")
@admin_required
def promotion_toggle(promo_id):
    try:
        with db_session() as db:
            toggle_promotion(db, promo_id)
    except ValidationError:
        abort(404)
    return redirect(url_for("admin.promotions"))


@bp.post("/promotions/<int:promo_id>/delete")
@admin_required
def promotion_delete(promo_id):
    with db_session() as db:
        promo = db.get(Promotion, promo_id)
        if not promo:
            abort(404)
        db.delete(promo)
        db.commit()
    flash("Promotion deleted.", "success")
    return redirect(url_for("admin.promotions"))


# --------------------------- REVIEWS ---------------------------
@bp.get("/reviews")
@admin_required
def reviews():
    with db_session() as db:
        rows = db.execute(
            select(Review).options(selectinload(Review.product))
            .order_by(Review.created_at.desc(), Review.id.desc())
        ).scalars().all()
        return render_template("admin/reviews.html", reviews=rows)


@bp.post("/reviews/<int:review_id>/<action>")
@admin_required
def review_action(review_id, action):
    with db_session() as db:
        if action == "approve":
            ok = review_service.set_approval(db, review_id, True) is not None
        elif action == "reject":
            ok = review_service.set_approval(db, review_id, False) is not None
        elif action == "delete":
            ok = review_service.delete_review(db, review_id)
        else:
            abort(400)
    if not ok:
        abort(404)
    flash(f"Review {action}d." if action != "reject" else "Review rejected.", "success")
    return redirect(url_for("admin.reviews"))


# --------------------------- SETTINGS ---------------------------
@bp.route("/settings", methods=["GET", "POST"])
@admin_required
def settings():
    with db_session() as db:
        if request.method == "POST":
            f = request.form
            try:
                logo_width = int(f.get("logo_width") or 200)
                logo_height = int(f.get("logo_height") or 60)
                update_loyalty(db, f.get("loyalty_active") == "on", float(f.get("points_per_purchase") or 0))
                update_settings(
                    db,
                    name=f.get("name", "").strip() or get_settings(db).name,
                    logo_url=f.get("logo_url", "").strip() or None,
                    logo_width=logo_width,
                    logo_height=logo_height,
                    hero_title=f.get("hero_title", "").strip(),
                    hero_subtitle=f.get("hero_subtitle", "").strip(),
                )
            except ValueError:
                db.rollback()
                flash("Sizes and points must be numbers.", "danger")
            else:
                flash("Settings saved.", "success")
            return redirect(url_for("admin.settings"))
        return render_template("admin/settings.html", settings=get_settings(db), loyalty=get_loyalty(db))
