"""
Routes Package - API Blueprints

This package contains all Flask blueprints for the API endpoints.
"""

from app.routes.tenants import tenants_bp

__all__ = [
    'tenants_bp',
]
