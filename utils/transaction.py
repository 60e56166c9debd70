import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from models import db
from services.errors import Internal

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work():
    """Commit on clean exit, roll back on any exception.

    Storage failures surface as ``Internal``; business errors pass through
    unchanged after the rollback.
    """
    session = db.session
    try:
        yield session
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Transaction rolled back after storage failure")
        raise Internal()
    except BaseException:
        session.rollback()
        raise
