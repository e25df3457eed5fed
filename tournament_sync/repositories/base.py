"""
Base repository for the sync engine's data access.

Reconcilers and processors go through repositories instead of issuing ad-hoc
queries, so "find by natural key, insert or update" lives in one place.

Example:
    class GameRepository(BaseRepository[Game]):
        def __init__(self, db: Session):
            super().__init__(Game, db)

    game, created = GameRepository(db).upsert(
        {"visual_code": "3", "link_id": encounter.id, "link_type": "competition"},
        {"status": "NORMAL", "winner": 1},
    )
"""
from typing import TypeVar, Generic, Type, Optional, List, Any, Dict, Tuple
from datetime import datetime
from sqlalchemy import desc, func
from sqlalchemy.orm import Query, Session

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Common data access methods for one model type.

    Attributes:
        model_type: The SQLAlchemy model class this repository manages
        db: The database session
    """

    def __init__(self, model_type: Type[T], db: Session):
        self.model_type = model_type
        self.db = db

    # ========================================================================
    # Lookups
    # ========================================================================

    def find_by_id(self, id: str) -> Optional[T]:
        """Find a single record by ID."""
        return self.db.query(self.model_type).filter(self.model_type.id == id).first()

    def find_one_by(self, **kwargs) -> Optional[T]:
        """Find the first record whose columns equal the given values."""
        return self.db.query(self.model_type).filter_by(**kwargs).first()

    def find_all(
        self,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        order_by: Optional[str] = None
    ) -> List[T]:
        """
        Find all records with optional pagination.

        Args:
            limit: Maximum number of records to return
            offset: Number of records to skip
            order_by: Column name to order by (prefix with '-' for descending)
        """
        query = self.db.query(self.model_type)

        if order_by:
            if order_by.startswith('-'):
                query = query.order_by(desc(getattr(self.model_type, order_by[1:])))
            else:
                query = query.order_by(getattr(self.model_type, order_by))

        if offset is not None:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)

        return query.all()

    def query(self) -> Query:
        """Get a new query object for this model."""
        return self.db.query(self.model_type)

    def where(self, *criterion) -> List[T]:
        """Filter records using SQLAlchemy expressions."""
        return self.db.query(self.model_type).filter(*criterion).all()

    def count(self, *criterion) -> int:
        """Count records matching optional criterion."""
        query = self.db.query(func.count(self.model_type.id))
        if criterion:
            query = query.filter(*criterion)
        return query.scalar() or 0

    # ========================================================================
    # Writes
    # ========================================================================

    def create(self, **kwargs) -> T:
        """Create a new record (added to the session, not committed)."""
        instance = self.model_type(**kwargs)
        self.db.add(instance)
        return instance

    def upsert(self, key: Dict[str, Any], values: Dict[str, Any]) -> Tuple[T, bool]:
        """
        Insert or update the record identified by a natural key.

        Args:
            key: Column values that identify the record
            values: Column values to write (applied on insert and update)

        Returns:
            (instance, created) - the record is flushed so its id is usable
        """
        instance = self.find_one_by(**key)
        created = instance is None

        if created:
            instance = self.model_type(**key, **values)
            self.db.add(instance)
        else:
            for column, value in values.items():
                setattr(instance, column, value)
            if hasattr(instance, "updated_at"):
                instance.updated_at = datetime.utcnow()

        self.db.flush()
        return instance, created

    def insert_if_missing(self, key: Dict[str, Any], values: Optional[Dict[str, Any]] = None) -> Tuple[T, bool]:
        """
        Insert a record unless one with the key exists; never touches existing rows.

        Returns:
            (instance, created)
        """
        instance = self.find_one_by(**key)
        if instance is not None:
            return instance, False

        instance = self.model_type(**key, **(values or {}))
        self.db.add(instance)
        self.db.flush()
        return instance, True

    # ========================================================================
    # Save Operations
    # ========================================================================

    def save(self) -> None:
        """Commit pending changes to the database."""
        self.db.commit()

    def flush(self) -> None:
        """Flush pending changes without committing."""
        self.db.flush()

    def rollback(self) -> None:
        """Rollback pending changes."""
        self.db.rollback()
