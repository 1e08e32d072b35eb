"""
CRUD operations (Create, Read, Update, Delete) for database models.

This layer provides a clean separation between the auth service and
database operations, following the Repository pattern.
"""

from app.crud import user

__all__ = ["user"]
