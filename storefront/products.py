import logging
import os
import uuid

from flask import current_app, url_for
from werkzeug.utils import secure_filename

from .errors import ValidationError
from .models import Product

log = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp"}
DOCUMENT_EXTENSIONS = {".pdf", ".txt", ".doc", ".docx"}


def store_upload(file_storage, allowed_extensions):
    """Save an uploaded file under UPLOAD_DIR and return its public URL."""
    name = secure_filename(file_storage.filename or "")
    ext = os.path.splitext(name)[1].lower()
    if not name or ext not in allowed_extensions:
        raise ValidationError(f"Unsupported file type: {file_storage.filename}")
    upload_dir = current_app.config["UPLOAD_DIR"]
    os.makedirs(upload_dir, exist_ok=True)
    stored = f"{uuid.uuid4().hex[:12]}_{name}"
    file_storage.save(os.path.join(upload_dir, stored))
    log.info(f"Stored upload {stored}")
    return url_for("media", filename=stored)


def discard_uploads(urls):
    """Remove files saved by store_upload, e.g. when their form was rejected."""
    upload_dir = current_app.config["UPLOAD_DIR"]
    for url in urls:
        if not url:
            continue
        try:
            os.remove(os.path.join(upload_dir, os.path.basename(url)))
        except FileNotFoundError:
            continue
        log.info(f"Discarded upload {os.path.basename(url)}")


def _lines(raw):
    return [line.strip() for line in (raw or "").splitlines() if line.strip()]


def _parse_price(raw):
    try:
        price = float((raw or "").strip())
    except ValueError:
        raise ValidationError("Price must be a valid number greater than zero")
    if price <= 0:
        raise ValidationError("Price must be a valid number greater than zero")
    return int(round(price * 100))


def _parse_stock(raw):
    try:
        stock = int((raw or "").strip())
    except ValueError:
        raise ValidationError("Stock must be a valid non-negative number")
    if stock < 0:
        raise ValidationError("Stock must be a valid non-negative number")
    return stock


def validate_product_form(form, uploaded_images=()):
    """Clean the product form into model fields.

    Images come one URL per line plus any uploaded image URLs. Colors are
    comma separated; color images are ``color=url`` lines and are kept only
    for listed colors.
    """
    name = (form.get("name") or "").strip()
    description = (form.get("description") or "").strip()
    if not name:
        raise ValidationError("Product name is required")
    if not description:
        raise ValidationError("Product description is required")
    price_cents = _parse_price(form.get("price"))
    stock = _parse_stock(form.get("stock"))

    images = _lines(form.get("images")) + list(uploaded_images)
    if not images:
        raise ValidationError("Add at least one product image")

    colors = []
    for color in (form.get("available_colors") or "").split(","):
        color = color.strip()
        if color and color not in colors:
            colors.append(color)

    color_images = []
    for line in _lines(form.get("color_images")):
        color, sep, image = line.partition("=")
        color, image = color.strip(), image.strip()
        if sep and color in colors and image:
            color_images.append({"color": color, "image": image})

    card = form.get("allow_card") in ("on", "1", "true")
    cod = form.get("allow_cod") in ("on", "1", "true")
    payment_url = (form.get("payment_url") or "").strip() if card else ""

    return {
        "name": name,
        "description": description,
        "price_cents": price_cents,
        "stock": stock,
        "category": (form.get("category") or "").strip(),
        "images": images,
        "available_colors": colors,
        "color_images": color_images,
        "allowed_payment_methods": {"cash_on_delivery": cod, "card": card, "payment_url": payment_url},
    }


def save_product(db, data, product=None, instructions_file=None):
    if product is None:
        product = Product()
        db.add(product)
    for key, value in data.items():
        setattr(product, key, value)
    if instructions_file:
        product.instructions_file = instructions_file
    db.commit()
    log.info(f"Saved product #{product.id} {product.name!r}")
    return product
