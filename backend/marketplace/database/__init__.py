"""
Database package initialization.

The package follows a modular structure:
- base: declarative base and column mixins
- connection: async engine, session factory and health checks
- models: SQLAlchemy ORM models for all entities
"""

__all__ = []
