"""Shared helpers for the service and blueprint layers.

parse_date:        lenient date parsing (returns None on bad input)
parse_date_input:  strict date parsing (raises ValidationError)
require_fields:    identifier presence check done before any store access
storage_guard:     maps SQLAlchemy failures to StorageError / DeadlineExceededError
pick:              payload lookup across alternate key spellings
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from toolroom.core.exceptions import DeadlineExceededError, StorageError, ValidationError
from toolroom.models import db

logger = logging.getLogger(__name__)

# Driver messages that mean the statement deadline fired
_DEADLINE_MARKERS = (
    "statement timeout",
    "canceling statement",
    "ora-01013",
    "ora-03136",
)


def parse_date(value):
    """Parse a date string (ISO or DD/MM/YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD/MM/YYYY (plant floor format)
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
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d/%m/%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value, field="date"):
    """Parse a date, raising ValidationError on malformed input.

    Empty input returns None.
    """
    if value in (None, ""):
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(
            f"Invalid {field}. Use YYYY-MM-DD or DD/MM/YYYY.",
            details={field: str(value)},
        )
    return parsed


def require_fields(**fields):
    """Raise ValidationError naming every blank field.

    Usage::

        require_fields(diecutId=diecut_id, diecutSn=diecut_sn)
    """
    missing = [name for name, value in fields.items() if value is None or str(value).strip() == ""]
    if missing:
        raise ValidationError(
            f"Missing required parameters: {', '.join(missing)}",
            details={name: "required" for name in missing},
        )


def _is_deadline(exc):
    text = str(getattr(exc, "orig", exc)).lower()
    return any(marker in text for marker in _DEADLINE_MARKERS)


@contextmanager
def storage_guard(operation, **context):
    """Run a unit of work, rolling back and translating store failures.

    Domain exceptions (ValidationError, NotFoundError, ...) roll the session
    back and propagate unchanged. SQLAlchemy failures are logged with the
    operation name and identifying keys, then re-raised as StorageError so
    driver details never reach the client.

    Usage::

        with storage_guard("cancel_order", diecut_sn=sn):
            ...
            db.session.commit()
    """
    try:
        yield
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning(
            "Integrity error in %s: %s", operation, exc.orig,
            extra={"operation": operation, **context},
        )
        raise StorageError(operation, "Duplicate or constraint violation") from exc
    except OperationalError as exc:
        db.session.rollback()
        if _is_deadline(exc):
            logger.warning(
                "Deadline exceeded in %s", operation,
                extra={"operation": operation, **context},
            )
            raise DeadlineExceededError(operation) from exc
        logger.exception(
            "Database operational error in %s", operation,
            extra={"operation": operation, **context},
        )
        raise StorageError(operation) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception(
            "Unexpected database error in %s", operation,
            extra={"operation": operation, **context},
        )
        raise StorageError(operation) from exc
    except Exception:
        db.session.rollback()
        raise


def pick(data, *names, default=None):
    """First present, non-None value among ``names`` in a request payload.

    Clients send both ``diecutSN`` and ``diecutSn`` spellings::

        sn = pick(data, "diecutSn", "diecutSN", "DIECUT_SN")
    """
    for name in names:
        value = data.get(name)
        if value is not None:
            return value
    return default
