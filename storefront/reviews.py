import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .errors import ValidationError
from .models import Order, OrderItem, Review

log = logging.getLogger(__name__)


def average_rating(ratings) -> float:
    ratings = list(ratings)
    if not ratings:
        return 0.0
    return sum(ratings) / len(ratings)


def approved_reviews(db, product_id):
    return db.execute(
        select(Review)
        .where(Review.product_id == product_id, Review.approved.is_(True))
        .order_by(Review.created_at.desc(), Review.id.desc())
    ).scalars().all()


def ratings_by_product(db, product_ids):
    """Average approved rating and review count for each product id."""
    product_ids = list(product_ids)
    grouped = {pid: [] for pid in product_ids}
    if product_ids:
        rows = db.execute(
            select(Review.product_id, Review.rating)
            .where(Review.product_id.in_(product_ids), Review.approved.is_(True))
        ).all()
        for pid, rating in rows:
            grouped[pid].append(rating)
    return {pid: (average_rating(r), len(r)) for pid, r in grouped.items()}


def has_reviewed(db, user_id, product_id) -> bool:
    return db.execute(
        select(Review.id).where(Review.product_id == product_id, Review.user_id == user_id)
    ).first() is not None


def has_delivered_purchase(db, user_id, product_id) -> bool:
    return db.execute(
        select(Order.id)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .where(Order.user_id == user_id, Order.status == "delivered", OrderItem.product_id == product_id)
    ).first() is not None


def can_review(db, user_id, product_id) -> bool:
    if user_id is None:
        return False
    return has_delivered_purchase(db, user_id, product_id) and not has_reviewed(db, user_id, product_id)


def submit_review(db, user, product_id, rating, comment):
    """Store a review for moderation; it stays hidden until approved."""
    try:
        rating = int(rating)
    except (TypeError, ValueError):
        raise ValidationError("Rating must be a number between 1 and 5")
    if rating < 1 or rating > 5:
        raise ValidationError("Rating must be a number between 1 and 5")
    comment = (comment or "").strip()
    if not comment:
        raise ValidationError("Please write a comment")
    if not can_review(db, int(user.id), product_id):
        raise ValidationError("Only customers who received this product can review it")

    review = Review(
        product_id=product_id,
        user_id=int(user.id),
        name=user.full_name or "Customer",
        rating=rating,
        comment=comment,
        approved=False,
    )
    db.add(review)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("You already reviewed this product")
    log.info(f"Review #{review.id} submitted for product {product_id} by user {user.id}")
    return review


def set_approval(db, review_id, approved: bool):
    review = db.get(Review, review_id)
    if review is None:
        return None
    review.approved = approved
    db.commit()
    return review


def delete_review(db, review_id) -> bool:
    review = db.get(Review, review_id)
    if review is None:
        return False
    db.delete(review)
    db.commit()
    return True
