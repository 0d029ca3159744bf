# sheetsync/api/dependencies.py
from functools import lru_cache

from sheetsync.core.store import get_store
from sheetsync.services.sync_service import SyncService


@lru_cache
def get_sync_service() -> SyncService:
    """Get the process-wide sync service bound to the configured store"""
    return SyncService(get_store())
