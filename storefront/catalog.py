from sqlalchemy import select, or_

from .models import Product

SORT_OPTIONS = {
    "newest": (Product.created_at.desc(), Product.id.desc()),
    "price_asc": (Product.price_cents.asc(), Product.id.asc()),
    "price_desc": (Product.price_cents.desc(), Product.id.desc()),
}


def purchasable(product) -> bool:
    methods = product.payment_methods()
    return bool(methods.get("cash_on_delivery") or methods.get("card"))


def search_products(db, term="", category="", sort="newest"):
    query = select(Product)
    term = (term or "").strip()
    if term:
        like = f"%{term}%"
        query = query.where(or_(Product.name.ilike(like), Product.description.ilike(like)))
    if category:
        query = query.where(Product.category == category)
    query = query.order_by(*SORT_OPTIONS.get(sort, SORT_OPTIONS["newest"]))
    return [p for p in db.execute(query).scalars().all() if purchasable(p)]


def categories(db):
    rows = db.execute(select(Product.category).distinct().order_by(Product.category)).scalars().all()
    return [c for c in rows if c]
