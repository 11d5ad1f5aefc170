"""
Database module for runbook and execution storage.

This module provides a unified interface for database operations using
SQLAlchemy ORM. PostgreSQL is the production target; SQLite URIs are accepted
for local development and tests.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar

from sqlalchemy import create_engine, update
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from errors import EngineError, ErrorCode, error_context
from config import config

# Configure logger
logger = logging.getLogger(__name__)

# Create base model class
Base = declarative_base()

# Type variable for generic functions
T = TypeVar('T', bound=Base)


class Database:
    """
    Database access with one engine and a session factory per instance.

    ``Database()`` returns the process-wide instance configured from
    ``config.database``; ``Database(uri)`` builds an independent instance,
    which is how tests get an isolated in-memory database.
    """

    _instance = None

    def __new__(cls, uri: Optional[str] = None):
        """
        Singleton for the configured database, fresh instance for explicit URIs.

        Args:
            uri: Optional database URI overriding ``config.database.uri``

        Returns:
            Database instance
        """
        if uri is not None:
            instance = super(Database, cls).__new__(cls)
            instance._initialize(uri)
            return instance

        if cls._instance is None:
            cls._instance = super(Database, cls).__new__(cls)
            cls._instance._initialize(config.database.uri)
        return cls._instance

    def _initialize(self, uri: str) -> None:
        """
        Initialize the database connection and session factory.

        Creates the database engine, tables, and session factory.
        """
        if uri.startswith("sqlite"):
            engine_kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if uri in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise every session sees an empty database
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs = {
                "pool_size": config.database.pool_size,
                "pool_timeout": config.database.pool_timeout,
                "pool_recycle": config.database.pool_recycle,
            }

        self._engine = create_engine(uri, echo=config.database.echo, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self.uri = uri

        self.create_tables()

        logger.info(f"Database initialized with backend: {self._engine.dialect.name}")

    def create_tables(self) -> None:
        """Create all tables known to the declarative base."""
        # Models register themselves on Base when imported
        import runbooks.models  # noqa: F401
        import runbooks.catalog  # noqa: F401

        Base.metadata.create_all(self._engine)

    def dispose(self) -> None:
        """Close every pooled connection."""
        self._engine.dispose()

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """
        Provide a session that commits on success and rolls back on error.

        Yields:
            SQLAlchemy Session
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def add(self, obj: T) -> T:
        """
        Insert a new object.

        Args:
            obj: Object to insert

        Returns:
            The inserted object with database defaults populated

        Raises:
            EngineError: If the object cannot be stored
        """
        with error_context(
            component_name="database",
            operation="add",
            error_class=EngineError,
            error_code=ErrorCode.DATABASE_ERROR,
            logger=logger
        ):
            with self.get_session() as session:
                session.add(obj)
                session.flush()
                session.refresh(obj)
                return obj

    def get(self, model: Type[T], id: Any) -> Optional[T]:
        """Fetch one object by primary key, or None."""
        with self.get_session() as session:
            return session.get(model, id)

    def query(self, model: Type[T], *filters, order_by=None) -> List[T]:
        """
        Query objects of a model.

        Args:
            model: Model class to query
            *filters: SQLAlchemy filter expressions
            order_by: Optional ordering expression (or tuple of them)

        Returns:
            List of matching objects
        """
        with self.get_session() as session:
            query = session.query(model)
            if filters:
                query = query.filter(*filters)
            if order_by is not None:
                if isinstance(order_by, (list, tuple)):
                    query = query.order_by(*order_by)
                else:
                    query = query.order_by(order_by)
            return query.all()

    def update(self, obj: T) -> T:
        """
        Update an existing object in the database.

        Args:
            obj: Object to update

        Returns:
            The updated object

        Raises:
            EngineError: If the object cannot be updated
        """
        with error_context(
            component_name="database",
            operation="update",
            error_class=EngineError,
            error_code=ErrorCode.DATABASE_ERROR,
            logger=logger
        ):
            with self.get_session() as session:
                merged_obj = session.merge(obj)
                session.flush()
                session.refresh(merged_obj)
                return merged_obj

    def update_where(self, model: Type[T], filters: List[Any], values: Dict[str, Any]) -> int:
        """
        Update every row matching ``filters`` in one statement.

        The filters double as the precondition of a conditional write: a
        row that no longer matches is left untouched.

        Args:
            model: Model class to update
            filters: SQLAlchemy filter expressions
            values: Column values to set

        Returns:
            Number of rows changed

        Raises:
            EngineError: If the statement fails
        """
        with error_context(
            component_name="database",
            operation=f"update {model.__tablename__}",
            error_class=EngineError,
            error_code=ErrorCode.DATABASE_ERROR,
            logger=logger
        ):
            with self.get_session() as session:
                statement = update(model).where(*filters).values(**values)
                result = session.execute(statement.execution_options(synchronize_session=False))
                return result.rowcount

    def delete(self, obj: Base) -> bool:
        """
        Delete an object from the database.

        Args:
            obj: Object to delete

        Returns:
            True once deleted

        Raises:
            EngineError: If the object cannot be deleted
        """
        with error_context(
            component_name="database",
            operation="delete",
            error_class=EngineError,
            error_code=ErrorCode.DATABASE_ERROR,
            logger=logger
        ):
            with self.get_session() as session:
                session.delete(session.merge(obj))
                return True
