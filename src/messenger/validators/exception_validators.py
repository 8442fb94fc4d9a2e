from typing import Iterable

from sqlalchemy import and_, inspect as sa_inspect, select, UniqueConstraint
from sqlalchemy.ext.asyncio import AsyncSession


def find_unknown_model_kwargs(model, kwargs: dict) -> list[str]:
    """
    Return the kwarg keys that are not mapped attributes of `model`.
    - model: the SQLAlchemy model class (not instance)
    - kwargs: dict of incoming kwargs to validate
    """
    allowed = {attr.key for attr in sa_inspect(model).attrs}
    return [k for k in kwargs.keys() if k not in allowed]


def get_required_columns(model) -> list[str]:
    """
    Columns that are NOT NULL, have no client/server default and are not auto PKs.
    """
    cols = []
    for col in model.__table__.columns:
        has_default = col.default is not None or col.server_default is not None
        is_auto_pk = col.autoincrement is True and col.primary_key
        if not col.nullable and not has_default and not is_auto_pk:
            cols.append(col.name)
    return cols


def get_unique_column_sets(model) -> list[Iterable[str]]:
    """
    Return the unique column sets of `model`'s table.

    Covers Column(unique=True), UniqueConstraint and unique Index.
    """
    table = model.__table__
    unique_sets: list[list[str]] = []
    for col in table.columns:
        if col.unique:
            unique_sets.append([col.name])
    for constraint in table.constraints:
        if isinstance(constraint, UniqueConstraint):
            unique_sets.append([c.name for c in constraint.columns])
    for idx in table.indexes:
        if idx.unique:
            unique_sets.append([c.name for c in idx.columns])
    return unique_sets


async def find_unique_conflicts(db: AsyncSession, model, kwargs: dict) -> set[str]:
    """
    Pre-insert check for rows that would violate a unique set.

    Sets with a missing or NULL value are skipped: NULLs never collide.
    Best-effort only; the database constraint remains the authority under races.
    """
    conflicts: set[str] = set()
    for cols in get_unique_column_sets(model):
        if not all(kwargs.get(c) is not None for c in cols):
            continue
        conditions = [getattr(model, c) == kwargs[c] for c in cols]
        res = await db.execute(select(model).where(and_(*conditions)).limit(1))
        if res.scalars().first() is not None:
            conflicts.update(cols)
    return conflicts
