"""Shared utility functions.

parse_date:         lenient date parsing for query params and JSON bodies
commit_or_raise:    service-layer commit that turns store failures into
                    UpstreamUnavailable
"""
import logging
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from compliance_desk.core.exceptions import UpstreamUnavailable
from compliance_desk.models import db

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def commit_or_raise():
    """Commit the current session.

    IntegrityError is re-raised untouched (callers translate it into a
    Conflict or re-query). Any other store error rolls back and surfaces
    as ``UpstreamUnavailable`` so the caller can retry.
    """
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Record store commit failed")
        raise UpstreamUnavailable("record store", exc.__class__.__name__) from exc
