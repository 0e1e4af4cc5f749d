# stockledger/main.py
import logging

from stockledger.config import settings
from stockledger.db import Base, engine
import stockledger.models  # noqa: F401  registers tables on Base

logger = logging.getLogger(__name__)


def init_db(bind=engine):
    Base.metadata.create_all(bind=bind)


def bootstrap():
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    init_db()
    logger.info("stockledger ready (%s, %s)", settings.APP_ENV, engine.url.render_as_string(hide_password=True))
