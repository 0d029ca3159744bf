# sheetsync/api/v1/endpoints/sync.py
import logging
from typing import Any, Dict

import orjson
from fastapi import APIRouter, Depends, Request
from fastapi.responses import ORJSONResponse
from pydantic import ValidationError as PydanticValidationError

from sheetsync.api.dependencies import get_sync_service
from sheetsync.core.locking import run_locked
from sheetsync.core.security import validate_secret_code
from sheetsync.models.sync_request import SyncRequest
from sheetsync.services.sync_service import SyncService

# Set up logging
logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])

INVALID_OPERATION = 'Invalid operation. Use "login", "delta_pull", or "delta_push"'
POST_ONLY = "This API only accepts POST requests. Please use POST with secret in request body."


def handle_operation(service: SyncService, params: SyncRequest) -> Dict[str, Any]:
    """Validate the secret, then dispatch the requested operation"""
    validate_secret_code(params.secret, service.store)

    operation = params.operation
    if operation == "login":
        return {"success": True, "message": "Credentials validated successfully"}
    if operation == "setupSheets":
        return service.setup_sheets()
    if operation == "delta_pull":
        return service.delta_pull(params.since, params.offset, params.limit)
    if operation == "delta_push":
        return service.delta_push(params.log, params.tableRecords)
    return {"error": INVALID_OPERATION}


@router.post("/sync", response_class=ORJSONResponse)
async def sync(request: Request, service: SyncService = Depends(get_sync_service)):
    """
    Single entry point for all client operations.
    Errors are reported in-band as {"error": message} with status 200.
    """
    try:
        body = await request.body()
        params = SyncRequest.model_validate(orjson.loads(body or b"{}"))
    except (orjson.JSONDecodeError, PydanticValidationError) as e:
        logger.warning(f"Rejected malformed request body: {str(e)}")
        return ORJSONResponse({"error": f"Invalid request body: {str(e)}"})

    try:
        logger.info(f"Sync request: operation={params.operation}")
        result = await run_locked(service.store, handle_operation, service, params)
        return ORJSONResponse(result)
    except Exception as e:
        logger.error(f"Error handling operation {params.operation}: {str(e)}", exc_info=True)
        return ORJSONResponse({"error": str(e)})


@router.get("/sync", response_class=ORJSONResponse)
async def sync_get():
    """Secrets travel in the request body, so GET is not supported"""
    return ORJSONResponse({"error": POST_ONLY})
