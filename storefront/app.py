import logging

import click
from flask import Flask, render_template, send_from_directory
from flask_login import current_user

from . import admin, auth, payments, shop
from .cart import cart_quantity
from .company import get_settings
from .config import Config
from .database import db_session, init_db
from .notify import format_money

log = logging.getLogger("storefront")


def configure_logging(app):
    log.setLevel(logging.DEBUG if app.debug else logging.INFO)
    for h in list(log.handlers):
        log.removeHandler(h)
    if app.config.get("LOG_FILE"):
        fh = logging.FileHandler(app.config["LOG_FILE"])
        fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        log.addHandler(fh)
    ch = logging.StreamHandler()
    ch.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    log.addHandler(ch)


def create_app(overrides=None):
    app = Flask(__name__, static_folder="static", template_folder="templates")
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    app.secret_key = app.config["SECRET_KEY"]

    configure_logging(app)
    init_db(app)
    auth.login_manager.init_app(app)

    app.register_blueprint(shop.bp)
    app.register_blueprint(auth.bp)
    app.register_blueprint(admin.bp)
    app.register_blueprint(payments.bp)

    @app.context_processor
    def inject_globals():
        with db_session() as db:
            settings = get_settings(db)
        role = current_user.role if current_user.is_authenticated else None
        return {
            "SITE_NAME": settings.name if settings.id else app.config["SITE_NAME"],
            "company": settings,
            "cart_qty": cart_quantity(),
            "user_role": role,
            "format_money": lambda cents: format_money(cents or 0, app.config["CURRENCY"]),
        }

    @app.get("/media/<path:filename>")
    def media(filename):
        return send_from_directory(app.config["UPLOAD_DIR"], filename, conditional=True)

    @app.errorhandler(403)
    def forbidden(e):
        return render_template("403.html"), 403

    @app.errorhandler(404)
    def not_found(e):
        return render_template("404.html"), 404

    register_commands(app)
    log.info(f"{app.config['SITE_NAME']} ready (db={app.config['DATABASE_URL']})")
    return app


def register_commands(app):
    @app.cli.command("seed")
    def seed_command():
        """Load the demo catalog."""
        from .seed import seed_catalog
        with app.app_context(), db_session() as db:
            count = seed_catalog(db)
        click.echo(f"Seeded products: {count}")

    @app.cli.command("create-admin")
    @click.argument("email")
    @click.argument("password")
    @click.option("--name", default="Administrator")
    def create_admin_command(email, password, name):
        """Create an admin account, or promote an existing one."""
        from sqlalchemy import select
        from .models import User
        with app.app_context(), db_session() as db:
            u = db.execute(select(User).where(User.email == email.strip().lower())).scalar_one_or_none()
            if u:
                u.role = "admin"
                db.commit()
                click.echo(f"Promoted {u.email} to admin")
            else:
                u = auth.create_user(db, email, password, name, role="admin")
                click.echo(f"Created admin {u.email}")
