"""Database initialization module.

Creates the OTP tables on app startup when they do not exist yet.
"""

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.models import Base

logger = logging.getLogger(__name__)


def init_database_schema(engine: Engine) -> None:
    """Create missing tables for every mapped model.

    Args:
        engine: Engine bound to ``settings.DATABASE_URL``.

    Raises:
        SQLAlchemyError: If the DDL cannot be executed.
    """
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError:
        logger.exception("Database schema initialization failed")
        raise
    logger.info("Database schema ready (%s)", ", ".join(sorted(Base.metadata.tables)))
