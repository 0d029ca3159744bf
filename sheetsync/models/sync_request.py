# sheetsync/models/sync_request.py
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict


class SyncRequest(BaseModel):
    """Body of every POST to the sync endpoint"""
    model_config = ConfigDict(extra="ignore")

    secret: Optional[Union[str, int]] = None
    operation: Optional[str] = None

    # delta_pull
    since: Optional[Union[int, float, str]] = None
    offset: Optional[int] = None
    limit: Optional[int] = None

    # delta_push
    log: Optional[List[Dict[str, Any]]] = None
    tableRecords: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None
