from sqlalchemy import select

from .models import Product

demo = [
    dict(name="T-Shirt", description="Soft cotton tee", price_cents=1999, stock=50, category="Clothing",
         images=["https://picsum.photos/seed/tee/600/600"], available_colors=["Black", "White"],
         color_images=[{"color": "White", "image": "https://picsum.photos/seed/tee-white/600/600"}]),
    dict(name="Mug", description="Ceramic mug", price_cents=1299, stock=30, category="Kitchen",
         images=["https://picsum.photos/seed/mug/600/600"]),
    dict(name="Cap", description="Adjustable cap", price_cents=1599, stock=20, category="Clothing",
         images=["https://picsum.photos/seed/cap/600/600"], available_colors=["Red", "Blue"]),
    dict(name="Gift card", description="Redeemable online", price_cents=5000, stock=100, category="Gifts",
         images=["https://picsum.photos/seed/gift/600/600"],
         allowed_payment_methods={"cash_on_delivery": False, "card": True, "payment_url": ""}),
]


def seed_catalog(db):
    """Insert or refresh the demo products, matched by name."""
    for d in demo:
        existing = db.execute(select(Product).where(Product.name == d["name"])).scalars().first()
        if existing:
            for k, v in d.items():
                setattr(existing, k, v)
        else:
            db.add(Product(**d))
    db.commit()
    return len(demo)
