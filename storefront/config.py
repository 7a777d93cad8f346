import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-key")
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///storefront.db")

    SITE_NAME = os.getenv("SITE_NAME", "My Shop")
    CURRENCY = os.getenv("CURRENCY", "USD")
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:3000")
    UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.abspath("uploads"))
    LOG_FILE = os.getenv("LOG_FILE", "app.log")

    # Alerts & order mail
    SLACK_WEBHOOK_URL = os.getenv("SLACK_WEBHOOK_URL")
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER")
    SMTP_PASS = os.getenv("SMTP_PASS")
    ALERT_EMAIL_TO = os.getenv("ALERT_EMAIL_TO")
    ORDER_NOTIFY_EMAIL = os.getenv("ORDER_NOTIFY_EMAIL")

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

    CORS_ALLOW_ORIGIN = os.getenv("CORS_ALLOW_ORIGIN", "*")
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024
