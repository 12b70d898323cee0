from seatsync.datastore.engine import close_db, get_session_factory, init_db
from seatsync.datastore.models import Base, KeyValueDB
from seatsync.datastore.repositories import KeyValueRepository

__all__ = [
    "Base",
    "KeyValueDB",
    "KeyValueRepository",
    "close_db",
    "get_session_factory",
    "init_db",
]
