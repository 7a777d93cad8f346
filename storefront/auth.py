import logging
from datetime import datetime
from functools import wraps
from urllib.parse import urlparse, urljoin

import bcrypt
from flask import Blueprint, abort, flash, redirect, render_template, request, url_for
from flask_login import LoginManager, UserMixin, current_user, login_user, logout_user, login_required
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .database import db_session
from .models import User, ROLES
from .notify import notify

log = logging.getLogger(__name__)

bp = Blueprint("auth", __name__)

login_manager = LoginManager()
login_manager.login_view = "auth.login"
login_manager.login_message_category = "warning"


class LoginUser(UserMixin):
    def __init__(self, u: User):
        self.id = str(u.id)
        self.email = u.email
        self.full_name = u.full_name
        self.role = u.role

    @property
    def is_admin(self):
        return self.role == "admin"


@login_manager.user_loader
def load_user(user_id):
    with db_session() as db:
        u = db.get(User, int(user_id))
        return LoginUser(u) if u else None


def roles_required(*roles):
    """Like login_required, but also checks the user's role."""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return login_manager.unauthorized()
            if current_user.role not in roles:
                abort(403)
            return view(*args, **kwargs)
        return wrapped
    return decorator


admin_required = roles_required("admin")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def check_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode(), password_hash.encode())


def create_user(db, email, password, full_name="", role="customer"):
    email = (email or "").strip().lower()
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    u = User(email=email, password_hash=hash_password(password), full_name=full_name.strip(), role=role)
    db.add(u)
    db.commit()
    log.info(f"Created {role} user {email}")
    return u


def authenticate(db, email, password):
    email = (email or "").strip().lower()
    u = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not u or not check_password(password, u.password_hash):
        return None
    u.last_sign_in = datetime.utcnow()
    db.commit()
    return u


def is_safe_url(target):
    ref_url = urlparse(request.host_url)
    test_url = urlparse(urljoin(request.host_url, target))
    return test_url.scheme in ("http", "https") and ref_url.netloc == test_url.netloc


# --------------------------- routes ---------------------------

@bp.get("/login")
def login():
    return render_template("login.html", next=request.args.get("next", ""))


@bp.post("/login")
def login_post():
    email = request.form.get("email", "").strip().lower()
    password = request.form.get("password", "")
    with db_session() as db:
        u = authenticate(db, email, password)
        if u is None:
            log.info(f"Failed login attempt for {email}")
            notify(f"Failed login attempt for {email}")
            return (render_template("login.html", error="Invalid credentials"), 401)
        login_user(LoginUser(u))
    next_url = request.form.get("next")
    if next_url and is_safe_url(next_url):
        return redirect(next_url)
    return redirect(url_for("shop.index"))


@bp.get("/logout")
@login_required
def logout():
    logout_user()
    return redirect(url_for("shop.index"))


@bp.get("/register")
def register():
    return render_template("register.html")


@bp.post("/register")
def register_post():
    email = request.form.get("email", "").strip().lower()
    password = request.form.get("password", "")
    full_name = request.form.get("full_name", "").strip()
    if not email or not password:
        return (render_template("register.html", error="Email and password required"), 400)
    with db_session() as db:
        exists = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if exists:
            return (render_template("register.html", error="User already exists"), 409)
        try:
            u = create_user(db, email, password, full_name)
        except IntegrityError:
            db.rollback()
            return (render_template("register.html", error="User already exists"), 409)
        login_user(LoginUser(u))
    return redirect(url_for("shop.index"))
