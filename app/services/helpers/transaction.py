"""
Transaction boundary for service-layer writes.

Every mutating service function owns exactly one transaction:

    with atomic():
        ...  # add / update / delete
    # committed here; any exception rolled back and re-raised

IntegrityError and other DB errors propagate unchanged after rollback; the
app-level handlers in app/utils/errors.py render them. A StaleDataError (the
Member version counter moved under us) is translated to ConflictError so the
caller sees a CONFLICT rather than a 500.
"""

import logging
from contextlib import contextmanager

from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConflictError
from app.models import db

logger = logging.getLogger(__name__)


@contextmanager
def atomic():
    try:
        yield db.session
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Concurrent modification detected: %s", exc)
        raise ConflictError(
            "Member", "version",
            message="Member was modified concurrently; reload and retry",
        ) from exc
    except Exception:
        db.session.rollback()
        raise
