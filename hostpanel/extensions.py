from contextlib import contextmanager

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()


@contextmanager
def atomic():
    """
    One unit of work on the shared session.

    Everything flushed inside the block commits together; any exception
    rolls the whole unit back and is re-raised to the caller.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
