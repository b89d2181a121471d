"""Database package for the bill store."""
from .bill_store import BillNotFoundError, BillRecord, BillStore
from .connection import close_db, create_db_engine, create_session_factory, init_db
from .models import Base, Bill

__all__ = [
    "Base",
    "Bill",
    "BillNotFoundError",
    "BillRecord",
    "BillStore",
    "close_db",
    "create_db_engine",
    "create_session_factory",
    "init_db",
]
