from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, Float, Boolean, JSON, Table,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

ROLES = ("customer", "admin", "fulfillment", "dropshipping")
ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "pending_cod", "paid", "failed")
PAYMENT_METHODS = ("cash_on_delivery", "card")


def default_payment_methods():
    return {"cash_on_delivery": True, "card": True, "payment_url": ""}


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String(200), unique=True, nullable=False)
    password_hash = Column(String(200), nullable=False)
    full_name = Column(String(200), nullable=False, default="")
    role = Column(String(32), nullable=False, default="customer")
    points = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_sign_in = Column(DateTime)
    orders = relationship("Order", back_populates="user")


promotion_products = Table(
    "promotion_products",
    Base.metadata,
    Column("promotion_id", Integer, ForeignKey("promotions.id", ondelete="CASCADE"), primary_key=True),
    Column("product_id", Integer, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
)


class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    price_cents = Column(Integer, nullable=False, default=0)
    images = Column(JSON, nullable=False, default=list)
    stock = Column(Integer, nullable=False, default=0)
    category = Column(String(100), nullable=False, default="")
    available_colors = Column(JSON, nullable=False, default=list)
    color_images = Column(JSON, nullable=False, default=list)  # [{"color":..,"image":..}]
    allowed_payment_methods = Column(JSON, nullable=False, default=default_payment_methods)
    instructions_file = Column(String(500))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    reviews = relationship("Review", back_populates="product", cascade="all, delete-orphan")
    promotions = relationship("Promotion", secondary=promotion_products, back_populates="products")

    def main_image(self):
        return self.images[0] if self.images else ""

    def payment_methods(self):
        methods = default_payment_methods()
        methods.update(self.allowed_payment_methods or {})
        return methods

    def image_for_color(self, color):
        for entry in self.color_images or []:
            if entry.get("color") == color:
                return entry.get("image")
        return self.main_image()


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("product_id", "user_id", name="uq_review_product_user"),)
    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"))
    name = Column(String(200), nullable=False, default="")
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False, default="")
    approved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    product = relationship("Product", back_populates="reviews")


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"))
    is_guest = Column(Boolean, nullable=False, default=False)
    guest_info = Column(JSON)                        # {full_name, email, phone}
    shipping_address = Column(JSON, nullable=False)  # {full_name, address, city, postal_code, country, phone}
    payment_method = Column(String(32), nullable=False)
    status = Column(String(32), nullable=False, default="pending")
    payment_status = Column(String(32), nullable=False, default="pending")
    total_cents = Column(Integer, nullable=False, default=0)
    payment_url = Column(String(1000))
    payment_reference = Column(String(128))  # stripe checkout session id
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    @property
    def customer_name(self):
        return (self.shipping_address or {}).get("full_name") or (self.guest_info or {}).get("full_name") or "N/A"

    @property
    def customer_email(self):
        if self.guest_info and self.guest_info.get("email"):
            return self.guest_info["email"]
        if self.user is not None:
            return self.user.email
        return "N/A"


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"))
    product_name = Column(String(200), nullable=False, default="")
    quantity = Column(Integer, nullable=False, default=1)
    price_at_time_cents = Column(Integer, nullable=False, default=0)
    selected_color = Column(String(64))
    order = relationship("Order", back_populates="items")
    product = relationship("Product")

    @property
    def subtotal_cents(self):
        return self.price_at_time_cents * self.quantity


class Promotion(Base):
    __tablename__ = "promotions"
    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    type = Column(String(32), nullable=False)
    value = Column(Integer)              # percent for "percentage", cents for "fixed"
    total_price_cents = Column(Integer)  # per-unit price for "discount"
    buy_quantity = Column(Integer, nullable=False, default=1)
    pay_quantity = Column(Integer, nullable=False, default=1)
    active = Column(Boolean, nullable=False, default=True)
    start_date = Column(DateTime)
    end_date = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    products = relationship("Product", secondary=promotion_products, back_populates="promotions")


class CartSnapshot(Base):
    __tablename__ = "cart_snapshots"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    json_payload = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class CompanySettings(Base):
    __tablename__ = "company_settings"
    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    logo_url = Column(String(500))
    logo_width = Column(Integer, default=200)
    logo_height = Column(Integer, default=60)
    hero_title = Column(String(300), nullable=False, default="")
    hero_subtitle = Column(Text, nullable=False, default="")
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class LoyaltyConfig(Base):
    __tablename__ = "loyalty_config"
    id = Column(Integer, primary_key=True)
    active = Column(Boolean, nullable=False, default=False)
    points_per_purchase = Column(Float, nullable=False, default=0.0)
