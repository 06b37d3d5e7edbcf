"""
Base Repository Pattern
Provides common CRUD operations for all repositories
"""

from typing import Generic, TypeVar, Type, List, Optional, Dict, Any, Iterable
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from app.models.base import Base
import logging

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Base repository with common CRUD operations"""

    def __init__(self, model: Type[ModelType], db: Session):
        """
        Initialize repository

        Args:
            model: SQLAlchemy model class
            db: Database session
        """
        self.model = model
        self.db = db

    def create(self, obj_data: Dict[str, Any]) -> ModelType:
        """
        Create a new record

        Args:
            obj_data: Dictionary of object attributes

        Returns:
            Created object
        """
        try:
            db_obj = self.model(**obj_data)
            self.db.add(db_obj)
            self.db.commit()
            self.db.refresh(db_obj)
            return db_obj
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self.model.__name__}: {e}")
            self.db.rollback()
            raise

    def get(self, id: int) -> Optional[ModelType]:
        """Get record by ID"""
        return self.db.query(self.model).filter(self.model.id == id).first()

    def get_many(self, ids: Iterable[int]) -> List[ModelType]:
        """Get all records whose ID is in ``ids``, ordered by ID"""
        ids = list(ids)
        if not ids:
            return []
        return (
            self.db.query(self.model)
            .filter(self.model.id.in_(ids))
            .order_by(self.model.id)
            .all()
        )

    def get_all(self, skip: int = 0, limit: int = 100) -> List[ModelType]:
        """Get all records with pagination"""
        return self.db.query(self.model).offset(skip).limit(limit).all()

    def update(self, db_obj: ModelType, obj_data: Dict[str, Any]) -> ModelType:
        """
        Update existing record

        Args:
            db_obj: Existing database object
            obj_data: Dictionary of updated attributes

        Returns:
            Updated object
        """
        try:
            for key, value in obj_data.items():
                if hasattr(db_obj, key):
                    setattr(db_obj, key, value)

            self.db.commit()
            self.db.refresh(db_obj)
            return db_obj
        except SQLAlchemyError as e:
            logger.error(f"Error updating {self.model.__name__}: {e}")
            self.db.rollback()
            raise

    def delete(self, id: int) -> bool:
        """
        Delete record by ID

        Returns:
            True if deleted, False if not found
        """
        try:
            db_obj = self.get(id)
            if db_obj:
                self.db.delete(db_obj)
                self.db.commit()
                return True
            return False
        except SQLAlchemyError as e:
            logger.error(f"Error deleting {self.model.__name__}: {e}")
            self.db.rollback()
            raise

    def count(self) -> int:
        """Count total records"""
        return self.db.query(self.model).count()

    def exists(self, id: int) -> bool:
        """Check if record exists"""
        return self.db.query(self.model).filter(self.model.id == id).first() is not None
