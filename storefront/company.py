import logging
import math

from sqlalchemy import select

from .models import CompanySettings, LoyaltyConfig, User

log = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "name": "Premium Quality",
    "logo_url": None,
    "logo_width": 200,
    "logo_height": 60,
    "hero_title": "Premium Quality Products",
    "hero_subtitle": "Discover our selection of exclusive products with the best guaranteed quality",
}


def get_settings(db):
    """First settings row, or an unsaved row filled with defaults."""
    row = db.execute(select(CompanySettings).order_by(CompanySettings.id)).scalars().first()
    if row is None:
        log.debug("No company settings found, using defaults")
        return CompanySettings(**DEFAULT_SETTINGS)
    return row


def update_settings(db, **fields):
    row = db.execute(select(CompanySettings).order_by(CompanySettings.id)).scalars().first()
    if row is None:
        row = CompanySettings(**DEFAULT_SETTINGS)
        db.add(row)
    for key, value in fields.items():
        if key in DEFAULT_SETTINGS:
            setattr(row, key, value)
    db.commit()
    return row


def get_loyalty(db):
    cfg = db.get(LoyaltyConfig, 1)
    if cfg is None:
        cfg = LoyaltyConfig(id=1, active=False, points_per_purchase=0.0)
    return cfg


def update_loyalty(db, active, points_per_purchase):
    points_per_purchase = float(points_per_purchase)
    if not math.isfinite(points_per_purchase):
        raise ValueError("Points per purchase must be a finite number")
    cfg = db.get(LoyaltyConfig, 1)
    if cfg is None:
        cfg = LoyaltyConfig(id=1)
        db.add(cfg)
    cfg.active = bool(active)
    cfg.points_per_purchase = max(0.0, points_per_purchase)
    db.commit()
    return cfg


def award_points(db, user_id, total_cents) -> int:
    """Credit loyalty points for a purchase; returns the points added."""
    cfg = db.get(LoyaltyConfig, 1)
    if user_id is None or cfg is None or not cfg.active:
        return 0
    user = db.get(User, user_id)
    if user is None:
        return 0
    points = math.floor(total_cents / 100 * cfg.points_per_purchase)
    if points <= 0:
        return 0
    user.points = (user.points or 0) + points
    db.commit()
    log.info(f"Awarded {points} loyalty points to user {user_id}")
    return points
