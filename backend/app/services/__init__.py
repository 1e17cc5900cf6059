"""
Services Package - Business Logic Layer

This package contains service classes that implement business logic for the application.
Services sit between routes (controllers) and models (data layer), handling complex
operations, validation, and orchestration.

Architecture:
- Routes and scripts call service methods instead of directly manipulating models
- Services encapsulate business logic and validation
- Services handle transactions and error handling

Available Services:
- TenantService: Tenant registry, schema provisioning, updates and rollbacks
"""

from app.services.tenant_service import TenantService

__all__ = [
    'TenantService',
]
