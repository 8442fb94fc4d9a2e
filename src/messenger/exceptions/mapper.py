import re
import logging
from contextlib import asynccontextmanager

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .integrity_classifier import (
    classify_integrity_error,
    UniqueConstraintError,
    NotNullConstraintError,
    ForeignKeyConstraintError,
    CheckConstraintError,
)
from .base import DuplicateError, NotFoundError, RepositoryError

logger = logging.getLogger(__name__)

# Named constraints whose client-facing fields differ from their raw columns.
CONSTRAINT_FIELDS: dict[str, list[str]] = {
    "uq_conversations_pair_pet": ["participant_ids", "pet_context_id"],
    "uq_conversation_members_member": ["conversation_id", "user_id"],
}

# -----------------------
# Column extraction helpers
# -----------------------

_PG_NOT_NULL = re.compile(r'null value in column "(?P<col>[^"]+)"', re.IGNORECASE)
_PG_KEY = re.compile(r'key \((?P<cols>[^)]+)\)=', re.IGNORECASE)
_SQLITE_FAILED = re.compile(r'(?:UNIQUE|NOT NULL) constraint failed: (?P<cols>.+)$', re.IGNORECASE)


def _extract_columns_postgres(msg: str) -> list[str] | None:
    """
    Extract column names from Postgres messages such as
    'null value in column "content"' or 'Key (participant_low, ...)=(...) already exists.'
    """
    m = _PG_NOT_NULL.search(msg)
    if m:
        return [m.group("col")]
    m = _PG_KEY.search(msg)
    if m:
        return [c.strip().strip('"') for c in m.group("cols").split(",")]
    return None


def _extract_columns_sqlite(msg: str) -> list[str] | None:
    # 'UNIQUE constraint failed: conversations.participant_low, conversations.participant_high, ...'
    m = _SQLITE_FAILED.search(msg)
    if m:
        return [c.split(".")[-1].strip() for c in re.split(r",\s*", m.group("cols"))]
    return None


def extract_columns_from_integrity(exc: IntegrityError) -> list[str] | None:
    """
    Best-effort extraction of column names from the DB message (Postgres, SQLite).
    """
    msg = str(exc.orig) if exc.orig is not None else str(exc)
    return _extract_columns_postgres(msg) or _extract_columns_sqlite(msg)


def _fields_for(columns: list[str] | None, constraint_name: str | None) -> list[str] | None:
    if constraint_name and constraint_name in CONSTRAINT_FIELDS:
        return list(CONSTRAINT_FIELDS[constraint_name])
    if columns and {"participant_low", "participant_high", "pet_context_key"} <= set(columns):
        return list(CONSTRAINT_FIELDS["uq_conversations_pair_pet"])
    return columns


# -----------------------
# Mapper
# -----------------------

def raise_mapped_integrity_error(exc: IntegrityError, model_name: str | None = None) -> None:
    """
    Map a SQLAlchemy IntegrityError to an app-level exception and raise it.

    - unique      -> DuplicateError (409)
    - foreign key -> NotFoundError (404): a referenced profile/conversation/listing is gone
    - not null    -> RepositoryError with the missing fields
    - check/other -> RepositoryError with a sanitized message
    """
    exc_cls, constraint_name = classify_integrity_error(exc)
    fields = _fields_for(extract_columns_from_integrity(exc), constraint_name)
    model_part = model_name or "Record"
    context = {"model": model_part, "fields": fields, "constraint": constraint_name}

    if exc_cls is UniqueConstraintError:
        logger.info("mapper.duplicate_detected", extra=context)
        if fields:
            raise DuplicateError(
                f"{model_part} already exists for field(s): {', '.join(fields)}",
                fields=fields,
                constraint=constraint_name,
            ) from exc
        raise DuplicateError(f"{model_part} already exists", constraint=constraint_name) from exc

    if exc_cls is ForeignKeyConstraintError:
        logger.info("mapper.foreign_key_violation", extra=context)
        raise NotFoundError(f"{model_part} references a missing record", fields=fields) from exc

    if exc_cls is NotNullConstraintError:
        logger.info("mapper.not_null_violation", extra=context)
        if fields:
            raise RepositoryError(
                f"Missing required field(s): {', '.join(fields)} for {model_part}",
                fields=fields,
                constraint=constraint_name,
            ) from exc
        raise RepositoryError(f"Missing required field for {model_part}", constraint=constraint_name) from exc

    if exc_cls is CheckConstraintError:
        logger.debug("mapper.check_constraint_failure", extra=context)
        raise RepositoryError(
            f"{model_part} business rule violated (check constraint).", constraint=constraint_name
        ) from exc

    logger.warning("mapper.unknown_integrity_error", extra=context)
    raise RepositoryError(f"{model_part} database integrity error.") from exc


# -----------------------
# Async context manager to DRY error handling in repositories
# -----------------------
@asynccontextmanager
async def db_error_handler(db: AsyncSession, model_name: str | None = None):
    """
    Usage:
        async with db_error_handler(self.db, self.model.__name__):
            ... DB ops that may raise IntegrityError ...

    Rolls the session back on any error. IntegrityErrors are mapped to
    app-level errors; RepositoryErrors pass through; anything else becomes
    a generic RepositoryError.
    """
    try:
        yield
    except IntegrityError as exc:
        try:
            await db.rollback()
        except Exception:
            logger.exception("mapper.rollback_failed", extra={"model": model_name})
        raise_mapped_integrity_error(exc, model_name)
    except RepositoryError:
        try:
            await db.rollback()
        except Exception:
            logger.exception("mapper.rollback_failed", extra={"model": model_name})
        raise
    except Exception as exc:
        try:
            await db.rollback()
        except Exception:
            logger.exception("mapper.rollback_failed", extra={"model": model_name})
        logger.exception("mapper.unexpected_db_error", extra={"model": model_name})
        raise RepositoryError(f"Failed to operate on {model_name or 'database'}") from exc
