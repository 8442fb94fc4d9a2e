"""
Base repository class providing common database operations.

Repositories work inside a session owned by the caller: they `flush()` so
generated ids and defaults are available, but never `commit()`. The
conversation store decides transaction boundaries, which is what lets
"create conversation + first message" succeed or fail as one unit.
"""
from messenger.exceptions.base import (
    RepositoryError,
    DuplicateError,
    NotFoundError,
    InvalidFieldError
)

from messenger.exceptions.mapper import db_error_handler
from messenger.validators.exception_validators import find_unknown_model_kwargs, get_required_columns, find_unique_conflicts

import time
from typing import TypeVar, Generic, Type, Iterable
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import logging

from messenger.database.base import Base

ModelType = TypeVar("ModelType", bound=Base)

logger = logging.getLogger(__name__)


class BaseRepository(Generic[ModelType]):
    """
    Generic base repository providing common create/read operations.

    Type Parameters:
        ModelType: The SQLAlchemy model class this repository manages.
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        """
        Initialize the repository.

        Args:
            model: The SQLAlchemy model class (not an instance)
            db: The async database session
        """
        self.model = model
        self.db = db

    # =================================================================================================================
    # Basic Create Operations
    # =================================================================================================================

    async def create(self, **kwargs) -> ModelType:
        """
        Validate and insert an entity, returning it flushed and refreshed.

        Validation runs in order: unknown fields, missing required columns,
        unique pre-check. Expected client errors are logged at INFO without a
        stack trace; only keys are logged, never values.

        Raises:
            InvalidFieldError: kwargs name attributes the model does not have.
            RepositoryError: required columns are missing or the write failed.
            DuplicateError: a unique column set already exists.
            NotFoundError: a referenced row does not exist (foreign key).
        """
        model_name = self.model.__name__
        logger.debug(
            "repo.create.start",
            extra={"model": model_name, "operation": "create", "provided_keys": sorted(kwargs.keys())},
        )

        unknown = find_unknown_model_kwargs(self.model, kwargs)
        if unknown:
            logger.info(
                "repo.create.invalid_fields",
                extra={"model": model_name, "operation": "create", "invalid_fields": sorted(unknown)},
            )
            raise InvalidFieldError(f"Unknown field(s) for {model_name}: {', '.join(unknown)}", fields=unknown)

        missing = [c for c in get_required_columns(self.model) if kwargs.get(c) is None]
        if missing:
            logger.info(
                "repo.create.missing_required",
                extra={"model": model_name, "operation": "create", "missing_fields": sorted(missing)},
            )
            raise RepositoryError(f"Missing required field(s): {', '.join(missing)} for {model_name}", fields=missing)

        conflicts = await find_unique_conflicts(self.db, self.model, kwargs)
        if conflicts:
            logger.info(
                "repo.create.duplicate_precheck",
                extra={"model": model_name, "operation": "create", "conflict_fields": sorted(conflicts)},
            )
            raise DuplicateError(
                f"{model_name} already exists for field(s): {', '.join(sorted(conflicts))}",
                fields=sorted(conflicts),
            )

        start = time.perf_counter()
        async with db_error_handler(self.db, model_name):
            entity = self.model(**kwargs)
            self.db.add(entity)
            await self.db.flush()
            await self.db.refresh(entity)

        logger.info(
            "repo.create.success",
            extra={
                "model": model_name,
                "operation": "create",
                "id": getattr(entity, "id", None),
                "duration_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        return entity

    # =================================================================================================================
    # Basic Read Operations
    # =================================================================================================================

    async def get_by_id(self, entity_id: UUID) -> ModelType | None:
        """
        Get an entity by its ID.

        Args:
            entity_id: The UUID of the entity to retrieve

        Returns:
            The entity if found, otherwise None

        Raises:
            RepositoryError: If an error occurs during retrieval.
        """
        try:
            result = await self.db.execute(select(self.model).where(self.model.id == entity_id))
            entity = result.scalar_one_or_none()
        except Exception as e:
            logger.error(f"Error retrieving {self.model.__name__} by ID {entity_id}: {e}")
            raise RepositoryError(f"Failed to retrieve {self.model.__name__}") from e

        logger.debug(f"Retrieved {self.model.__name__} by ID: {entity_id}")
        return entity

    async def get_by_id_or_raise(self, entity_id: UUID) -> ModelType:
        """
        Get an entity by its ID or raise NotFoundError.
        """
        entity = await self.get_by_id(entity_id)
        if entity is None:
            raise NotFoundError(f"{self.model.__name__} with ID {entity_id} not found")
        return entity

    async def get_many_by_ids(self, entity_ids: Iterable[UUID]) -> dict[UUID, ModelType]:
        """
        Fetch several entities in one query, keyed by id. Unknown ids are absent.
        """
        ids = list({i for i in entity_ids if i is not None})
        if not ids:
            return {}
        try:
            result = await self.db.execute(select(self.model).where(self.model.id.in_(ids)))
            entities = result.scalars().all()
        except Exception as e:
            logger.error(f"Error retrieving {len(ids)} {self.model.__name__} entities: {e}")
            raise RepositoryError(f"Failed to retrieve {self.model.__name__} entities") from e
        return {entity.id: entity for entity in entities}

    async def exists(self, entity_id: UUID) -> bool:
        """
        Check if an entity exists by its ID.
        """
        try:
            result = await self.db.execute(select(self.model.id).where(self.model.id == entity_id))
            found = result.scalar() is not None
        except Exception as e:
            logger.error(f"Error checking existence of {self.model.__name__} {entity_id}: {e}")
            raise RepositoryError(f"Failed to check {self.model.__name__} existence") from e

        logger.debug(f"{self.model.__name__} with ID {entity_id} exists: {found}")
        return found
