"""
Base model with common fields for all database models.

Provides UUID primary keys, automatic timestamps, and validation hooks.
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Uuid
from sqlalchemy.ext.declarative import declared_attr
from typing import Dict, Any, Optional


class BaseModel:
    """
    Abstract base model with common fields for all models.

    Provides:
    - UUID primary key (id)
    - Automatic timestamps (created_at, updated_at)
    - Serialization helpers (to_dict)
    - Lifecycle hooks (before_insert, before_update)

    Usage:
        class Tenant(BaseModel, db.Model):
            __tablename__ = 'tenants'
            tenant_id = Column(String(50), unique=True, nullable=False)
    """

    @declared_attr
    def __tablename__(cls):
        """
        Generate table name from class name if not explicitly set.

        Override in child class if custom table name needed.
        """
        return cls.__name__.lower() + 's'

    # Primary key (UUID)
    id = Column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
        comment="Unique identifier for the record"
    )

    # Timestamp fields
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Timestamp when record was created (UTC)"
    )

    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Timestamp when record was last updated (UTC)"
    )

    def to_dict(self, exclude: Optional[list] = None) -> Dict[str, Any]:
        """
        Convert model instance to dictionary for JSON serialization.

        Args:
            exclude: List of field names to exclude from output

        Returns:
            Dictionary representation of the model

        Example:
            >>> tenant = Tenant(tenant_id='abc123', name='Acme')
            >>> tenant.to_dict(exclude=['last_error'])
            {
                'id': '123e4567-e89b-12d3-a456-426614174000',
                'tenant_id': 'abc123',
                'name': 'Acme',
                'created_at': '2024-01-01T00:00:00+00:00',
                ...
            }
        """
        exclude = exclude or []
        result = {}

        for column in self.__table__.columns:
            field_name = column.name

            if field_name in exclude:
                continue

            value = getattr(self, field_name, None)

            # Convert datetime to ISO format string
            if isinstance(value, datetime):
                result[field_name] = value.isoformat()
            # Convert UUID to string
            elif isinstance(value, uuid.UUID):
                result[field_name] = str(value)
            else:
                result[field_name] = value

        return result

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self.id}>"

    def __str__(self) -> str:
        return self.__repr__()

    def before_insert(self):
        """
        Hook called before inserting a new record.

        Override in child classes to add custom logic before insert.
        Called automatically by SQLAlchemy event listeners.
        """
        pass

    def before_update(self):
        """
        Hook called before updating a record.

        Override in child classes to add custom logic before update.
        Called automatically by SQLAlchemy event listeners.
        """
        pass


def register_base_model_events(db):
    """
    Register SQLAlchemy event listeners for BaseModel lifecycle hooks.

    This should be called during application initialization to enable
    before_insert and before_update hooks.

    Args:
        db: SQLAlchemy database instance

    Example:
        >>> from app.extensions import db
        >>> from app.models.base import register_base_model_events
        >>> register_base_model_events(db)
    """
    from sqlalchemy import event

    if event.contains(db.session, 'before_flush', _run_before_hooks):
        return

    event.listen(db.session, 'before_flush', _run_before_hooks)


def _run_before_hooks(session, flush_context, instances):
    """Call before_insert and before_update hooks."""
    for instance in session.new:
        if isinstance(instance, BaseModel):
            instance.before_insert()

    for instance in session.dirty:
        if isinstance(instance, BaseModel) and session.is_modified(instance, include_collections=False):
            instance.before_update()
