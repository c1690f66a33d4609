"""
Base Repository - Abstract base class for all repositories
Implements common database operations following the Repository Pattern
"""

from abc import ABC
from typing import TypeVar, Generic, List, Optional, Dict, Any, Type, Sequence
from sqlalchemy.orm import Session, Query
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy import insert, desc, asc
from enum import Enum
import logging

from services.common.errors import NotFoundError, ConflictError

logger = logging.getLogger(__name__)

# Type variable for model classes
T = TypeVar('T')


class SortOrder(Enum):
    """Sort order options"""
    ASC = "asc"
    DESC = "desc"


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base repository with common CRUD operations.

    Reads that fail are logged and degrade to empty results; writes
    roll back and re-raise so services can decide how to recover.
    """

    def __init__(self, session: Session, model_class: Type[T]):
        """
        Initialize repository with database session and model class.

        Args:
            session: SQLAlchemy database session
            model_class: The model class this repository manages
        """
        self.session = session
        self.model_class = model_class

    # CREATE Operations

    def create(self, **kwargs) -> T:
        """
        Create a new entity and flush it to obtain its id.

        Raises:
            ConflictError: If a uniqueness constraint rejects the row
            SQLAlchemyError: If any other database error occurs
        """
        try:
            entity = self.model_class(**kwargs)
            self.session.add(entity)
            self.session.flush()
            logger.debug(f"Created {self.model_class.__name__} with id {entity.id}")
            return entity
        except IntegrityError as e:
            logger.warning(f"Uniqueness conflict creating {self.model_class.__name__}: {e.orig}")
            self.session.rollback()
            raise ConflictError(
                f"{self.model_class.__name__} conflicts with an existing row",
                entity=self.model_class.__name__
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    def insert_ignore(self, values: Dict[str, Any], conflict_columns: Optional[Sequence[str]] = None) -> bool:
        """
        Insert a row unless one already exists for the given unique columns.

        Uses the dialect's ``ON CONFLICT DO NOTHING`` so concurrent writers
        never race between a check and an insert.

        Args:
            values: Column values for the new row
            conflict_columns: Columns of the unique constraint to test; None
                skips the row on a conflict with any unique index

        Returns:
            True if a row was inserted, False if it already existed
        """
        dialect = self.session.get_bind().dialect.name
        table = self.model_class.__table__

        if dialect == 'postgresql':
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        elif dialect == 'sqlite':
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            dialect_insert = None

        if dialect_insert is not None:
            stmt = dialect_insert(table).values(**values).on_conflict_do_nothing(
                index_elements=list(conflict_columns) if conflict_columns else None
            )
            result = self.session.execute(stmt)
            return bool(result.rowcount)

        # Generic dialects: rely on the constraint and treat a violation as "exists"
        try:
            with self.session.begin_nested():
                self.session.execute(insert(table).values(**values))
            return True
        except IntegrityError:
            return False

    # READ Operations

    def get_by_id(self, entity_id: int) -> Optional[T]:
        """Get entity by ID, or None if missing."""
        try:
            return self.session.get(self.model_class, entity_id)
        except SQLAlchemyError as e:
            logger.error(f"Error getting {self.model_class.__name__} by id {entity_id}: {e}")
            return None

    def get_by_id_or_raise(self, entity_id: int) -> T:
        """
        Get entity by ID.

        Raises:
            NotFoundError: If no entity has this id
        """
        entity = self.get_by_id(entity_id)
        if entity is None:
            raise NotFoundError(
                f"{self.model_class.__name__} {entity_id} not found",
                entity=self.model_class.__name__,
                entity_id=entity_id
            )
        return entity

    def find_by(self, **filters) -> List[T]:
        """Find entities by specific field values."""
        try:
            return self._build_query(filters).all()
        except SQLAlchemyError as e:
            logger.error(f"Error finding {self.model_class.__name__} by filters: {e}")
            return []

    def find_one_by(self, **filters) -> Optional[T]:
        """Find the first entity matching the field values."""
        try:
            return self._build_query(filters).first()
        except SQLAlchemyError as e:
            logger.error(f"Error finding {self.model_class.__name__} by filters: {e}")
            return None

    def exists(self, **filters) -> bool:
        return self.find_one_by(**filters) is not None

    def count(self, **filters) -> int:
        try:
            return self._build_query(filters).count()
        except SQLAlchemyError as e:
            logger.error(f"Error counting {self.model_class.__name__}: {e}")
            return 0

    # UPDATE Operations

    def update(self, entity: T, **updates) -> T:
        """
        Update an entity with new values.

        Raises:
            SQLAlchemyError: If database operation fails
        """
        try:
            for field, value in updates.items():
                if hasattr(entity, field):
                    setattr(entity, field, value)
            self.session.flush()
            logger.debug(f"Updated {self.model_class.__name__} with id {entity.id}")
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error updating {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    # Transaction Management

    def commit(self) -> None:
        """
        Commit the current transaction.

        Raises:
            ConflictError: If a uniqueness constraint fails at commit time
        """
        try:
            self.session.commit()
        except IntegrityError as e:
            logger.warning(f"Uniqueness conflict committing {self.model_class.__name__}: {e.orig}")
            self.session.rollback()
            raise ConflictError(
                f"Concurrent write conflict on {self.model_class.__name__}",
                entity=self.model_class.__name__
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise

    def rollback(self) -> None:
        self.session.rollback()

    def flush(self) -> None:
        self.session.flush()

    # Helper Methods

    def _build_query(self, filters: Optional[Dict[str, Any]] = None) -> Query:
        """
        Build a query with equality, IN (list values) and IS NULL filters.
        """
        query = self.session.query(self.model_class)

        if filters:
            for field, value in filters.items():
                if hasattr(self.model_class, field):
                    column = getattr(self.model_class, field)
                    if isinstance(value, list):
                        query = query.filter(column.in_(value))
                    elif value is None:
                        query = query.filter(column.is_(None))
                    else:
                        query = query.filter(column == value)

        return query
