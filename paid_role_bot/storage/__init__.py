from .factory import IdentityRecordStore, build_record_store
from .sqlite_store import SqliteIdentityStore

__all__ = ["IdentityRecordStore", "SqliteIdentityStore", "build_record_store"]
