"""
Unit Tests Package

This package contains unit tests for individual components:
- Models: Database model tests
- Schemas: Marshmallow schema validation tests
- Utils: Utility function tests
- Services: Business logic tests (with mocked dependencies)
"""
