import importlib
import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from storefront.config import settings

log = logging.getLogger("storefront.db")

DATABASE_URL = settings.DATABASE_URL
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, future=True, echo=False, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# every record type module must be imported so metadata is populated
MODEL_MODULES = [
    "storefront.models.cart_session",
    "storefront.models.abandoned_checkout",
    "storefront.models.payment_failure",
    "storefront.models.discount_code",
    "storefront.models.order",
]


def import_models():
    for mod in MODEL_MODULES:
        importlib.import_module(mod)


def init_db(bind=None, reset: bool = False):
    """
    Initialize DB schema.

    If reset is requested (argument or RESET_DB=1/true/yes), drop & recreate
    tables. Otherwise existing tables are left in place.
    """
    bind = bind or engine
    import_models()

    env_reset = os.environ.get("RESET_DB", "false").lower() in ("1", "true", "yes")
    if reset or env_reset:
        log.info("Resetting database schema")
        Base.metadata.drop_all(bind=bind)

    Base.metadata.create_all(bind=bind)
    log.info("Database initialized (%d tables)", len(Base.metadata.tables))
