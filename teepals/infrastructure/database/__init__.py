"""Database infrastructure package."""

from teepals.infrastructure.database.models import Base
from teepals.infrastructure.database.session import (
    get_db_session,
    init_db,
)

__all__ = [
    "Base",
    "get_db_session",
    "init_db",
]
