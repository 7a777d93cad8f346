from flask import current_app
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from .models import Base


def init_db(app):
    engine = create_engine(app.config["DATABASE_URL"], future=True)
    Base.metadata.create_all(engine)
    app.extensions["storefront.engine"] = engine
    return engine


def db_session():
    # objects stay readable in templates after commit
    return Session(current_app.extensions["storefront.engine"], expire_on_commit=False)
