import logging
import smtplib
from email.mime.text import MIMEText

import requests
from flask import current_app, render_template

log = logging.getLogger(__name__)


def format_money(cents: int, currency: str = "USD") -> str:
    return f"${cents/100:.2f}" if currency.upper() == "USD" else f"{cents/100:.2f} {currency}"


def _send_mail(to_addr, subject, body, subtype="plain"):
    cfg = current_app.config
    m = MIMEText(body, subtype, "utf-8")
    m["Subject"] = subject
    m["From"] = cfg.get("SMTP_USER") or "noreply@localhost"
    m["To"] = to_addr
    with smtplib.SMTP(cfg["SMTP_HOST"], cfg.get("SMTP_PORT", 587), timeout=5) as s:
        s.starttls()
        if cfg.get("SMTP_USER") and cfg.get("SMTP_PASS"):
            s.login(cfg["SMTP_USER"], cfg["SMTP_PASS"])
        s.send_message(m)


def notify(msg: str):
    """Operational alert to Slack and/or the alert inbox. Never raises."""
    cfg = current_app.config
    try:
        if cfg.get("SLACK_WEBHOOK_URL"):
            requests.post(cfg["SLACK_WEBHOOK_URL"], json={"text": msg}, timeout=5)
    except requests.RequestException as e:
        log.warning(f"Slack notify failed: {e}")
    try:
        if cfg.get("SMTP_HOST") and cfg.get("ALERT_EMAIL_TO"):
            _send_mail(cfg["ALERT_EMAIL_TO"], f"[{cfg['SITE_NAME']}] Notification", msg)
    except (smtplib.SMTPException, OSError) as e:
        log.warning(f"Email notify failed: {e}")


def send_order_notification(order):
    """Mail the shop inbox about a new order.

    Returns True when sent, False when sending failed and None when mail is
    not configured.
    """
    cfg = current_app.config
    to_addr = cfg.get("ORDER_NOTIFY_EMAIL")
    if not (cfg.get("SMTP_HOST") and to_addr):
        log.warning(f"Order notification for #{order.id} skipped: mail not configured")
        return None
    html = render_template("emails/order_notification.html", order=order)
    try:
        _send_mail(to_addr, f"New order received - ID: {order.id}", html, subtype="html")
    except (smtplib.SMTPException, OSError) as e:
        log.error(f"Order notification for #{order.id} failed: {e}")
        return False
    log.info(f"Order notification for #{order.id} sent to {to_addr}")
    return True
