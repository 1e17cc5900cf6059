"""
Tenant Model

This module defines the Tenant registry model of the schema-per-tenant platform.
Each tenant owns an isolated database schema, migrated along the shared changelog.

Key features:
- Stores tenant metadata in the master database (tenant registry)
- Schema name derived from the tenant identifier (tenant_<slug>), never changed
- Lifecycle state machine tracking provisioning, migrations and rollbacks
- Last error of a failed operation kept for operators
- Soft delete support (is_active flag)

State machine:
    UNPROVISIONED -> PROVISIONING -> READY | FAILED
    READY  -> PROVISIONING | MIGRATING | REVERTING
    FAILED -> PROVISIONING | MIGRATING
    MIGRATING | REVERTING -> READY | FAILED
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import String, Boolean, DateTime, Text, Index
from sqlalchemy.orm import validates

from .base import BaseModel
from ..extensions import db
from ..tenant_db import derive_schema_name
from ..tenant_db.dialects import ensure_schema_name
from ..tenant_db.exceptions import InvalidStateTransitionError

logger = logging.getLogger(__name__)


class Tenant(BaseModel, db.Model):
    """
    Tenant model representing an organization in the multi-tenant system.

    Attributes:
        tenant_id (str): External tenant identifier (e.g., "abc123")
        name (str): Human-readable tenant name (e.g., "Acme Corporation")
        schema_name (str): Database schema name (e.g., "tenant_abc123")
        is_active (bool): Soft delete flag - False means tenant is deactivated
        description (str): Optional description
        status (str): Lifecycle state (see STATUSES)
        last_error (str): Message of the last failed operation
        last_operation_at (datetime): End of the last provisioning operation

    Inherited from BaseModel:
        id (UUID): Primary key
        created_at (datetime): Creation timestamp (UTC)
        updated_at (datetime): Last update timestamp (UTC)
    """

    __tablename__ = 'tenants'

    STATUS_UNPROVISIONED = 'UNPROVISIONED'
    STATUS_PROVISIONING = 'PROVISIONING'
    STATUS_READY = 'READY'
    STATUS_MIGRATING = 'MIGRATING'
    STATUS_REVERTING = 'REVERTING'
    STATUS_FAILED = 'FAILED'

    STATUSES = (
        STATUS_UNPROVISIONED,
        STATUS_PROVISIONING,
        STATUS_READY,
        STATUS_MIGRATING,
        STATUS_REVERTING,
        STATUS_FAILED,
    )

    # States in which an operation is running on the schema
    IN_PROGRESS_STATUSES = (STATUS_PROVISIONING, STATUS_MIGRATING, STATUS_REVERTING)

    ALLOWED_TRANSITIONS = {
        STATUS_UNPROVISIONED: {STATUS_PROVISIONING},
        STATUS_PROVISIONING: {STATUS_READY, STATUS_FAILED},
        STATUS_READY: {STATUS_PROVISIONING, STATUS_MIGRATING, STATUS_REVERTING},
        STATUS_MIGRATING: {STATUS_READY, STATUS_FAILED},
        STATUS_REVERTING: {STATUS_READY, STATUS_FAILED},
        STATUS_FAILED: {STATUS_PROVISIONING, STATUS_MIGRATING},
    }

    # Fields
    tenant_id = db.Column(String(50), unique=True, nullable=False, index=True)
    name = db.Column(String(100), nullable=False)
    schema_name = db.Column(String(63), unique=True, nullable=False, index=True)
    is_active = db.Column(Boolean, default=True, nullable=False)
    description = db.Column(String(500), nullable=True)
    status = db.Column(String(20), default=STATUS_UNPROVISIONED, nullable=False)
    last_error = db.Column(Text, nullable=True)
    last_operation_at = db.Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('ix_tenants_status_active', 'status', 'is_active'),
    )

    def __init__(self, **kwargs):
        """
        Initialize a new tenant.

        If schema_name is not provided, it is derived from the tenant identifier.
        """
        if 'schema_name' not in kwargs and kwargs.get('tenant_id'):
            kwargs['schema_name'] = derive_schema_name(kwargs['tenant_id'])
        kwargs.setdefault('status', self.STATUS_UNPROVISIONED)
        kwargs.setdefault('is_active', True)

        super().__init__(**kwargs)
        logger.debug(f"Tenant object initialized: tenant_id={self.tenant_id}, schema_name={self.schema_name}")

    @validates('tenant_id', 'schema_name')
    def _validate_immutable(self, key, value):
        current = getattr(self, key)
        if current is not None and current != value:
            raise ValueError(
                f"Cannot change {key} after tenant creation. "
                "Create a new tenant instead."
            )
        return value

    @property
    def is_ready(self) -> bool:
        return self.status == self.STATUS_READY

    @property
    def in_progress(self) -> bool:
        return self.status in self.IN_PROGRESS_STATUSES

    def can_transition_to(self, status: str) -> bool:
        return status in self.ALLOWED_TRANSITIONS.get(self.status, set())

    def transition_to(self, status: str, error: Optional[str] = None) -> None:
        """
        Move the tenant to a new lifecycle state (not committed).

        Args:
            status: Target state
            error: Error message, stored when the target state is FAILED

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
        """
        if not self.can_transition_to(status):
            raise InvalidStateTransitionError(self.status, status)

        logger.info(f"Tenant {self.tenant_id}: {self.status} -> {status}")
        self.status = status

        if status == self.STATUS_FAILED:
            self.last_error = error
        elif status == self.STATUS_READY:
            self.last_error = None

        if status not in self.IN_PROGRESS_STATUSES:
            self.last_operation_at = datetime.now(timezone.utc)

    def deactivate(self) -> None:
        """
        Soft delete this tenant by setting is_active = False.

        The schema is not dropped.
        """
        logger.info(f"Deactivating tenant {self.tenant_id}: {self.name}")
        self.is_active = False
        db.session.commit()

    def activate(self) -> None:
        """Reactivate a deactivated tenant."""
        logger.info(f"Activating tenant {self.tenant_id}: {self.name}")
        self.is_active = True
        db.session.commit()

    def to_dict(self, exclude: List[str] = None) -> dict:
        """Convert tenant to dictionary for JSON serialization."""
        return super().to_dict(exclude=exclude)

    @classmethod
    def find_by_tenant_id(cls, tenant_id: str) -> Optional['Tenant']:
        return cls.query.filter_by(tenant_id=tenant_id).first()

    @classmethod
    def find_by_schema_name(cls, schema_name: str) -> Optional['Tenant']:
        return cls.query.filter_by(schema_name=schema_name).first()

    @classmethod
    def get_all_active(cls) -> List['Tenant']:
        """
        Get all active tenants.

        Returns:
            List of active Tenant objects, oldest first
        """
        return cls.query.filter_by(is_active=True).order_by(cls.created_at.asc()).all()

    def before_insert(self) -> None:
        """
        Lifecycle hook called before inserting a new tenant.

        Validates that:
        - Tenant name is not empty
        - Schema name is a valid identifier
        """
        super().before_insert()

        if not self.name or not self.name.strip():
            raise ValueError("Tenant name cannot be empty")

        ensure_schema_name(self.schema_name)

        if self.status not in self.STATUSES:
            raise ValueError(f"Invalid tenant status: {self.status}")

        logger.debug(f"Tenant pre-insert validation passed: {self.tenant_id}")

    def __repr__(self) -> str:
        return (
            f"<Tenant(tenant_id='{self.tenant_id}', schema='{self.schema_name}', "
            f"status={self.status}, active={self.is_active})>"
        )

    def __str__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"Tenant '{self.name}' ({self.status}, {state})"
