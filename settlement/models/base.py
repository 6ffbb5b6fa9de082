"""
Declarative base.

All settlement models inherit from this class so that a single metadata
object describes the schema (used by Alembic and the test fixtures).
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all models."""
