# routers/coordinators.py

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from core.errors import CondoSyncError, PartialFailureError, http_status_for
from core.logging_config import logger
from models.functions import (
    CreateCityViewerRequest,
    CreateCoordinatorRequest,
    FunctionResponse,
    ResetPasswordRequest,
)
from services.provisioning import (
    provision_city_viewer,
    provision_coordinator,
    reset_coordinator_password,
)


router = APIRouter(
    prefix="/functions",
    tags=["Edge Functions"],
)


# -----------------------------------------------------
# Error envelope shared by every function route
# -----------------------------------------------------
def function_error(exc: Exception, operation: str) -> JSONResponse:
    if isinstance(exc, CondoSyncError):
        status = http_status_for(exc)
        if isinstance(exc, PartialFailureError) and not exc.compensated:
            logger.error(f"{operation}: rollback incomplete {exc.details}")
        body = FunctionResponse(success=False, error=exc.message, code=exc.code)
    else:
        logger.error(f"Unexpected error in {operation}", exc_info=exc)
        status = 500
        body = FunctionResponse(success=False, error=f"Internal error: {exc}", code="INTERNAL_ERROR")

    return JSONResponse(status_code=status, content=body.model_dump(exclude_none=True))


# -----------------------------------------------------
# POST /functions/create-coordinator
# -----------------------------------------------------
@router.post("/create-coordinator", summary="Create coordinator login + profile")
def create_coordinator(payload: CreateCoordinatorRequest):
    logger.info(f"create-coordinator for condominium {payload.condominium_id}")
    try:
        data = provision_coordinator(payload)
    except Exception as e:
        return function_error(e, "create-coordinator")

    return FunctionResponse(success=True, message="Coordinator created", data=data).model_dump(exclude_none=True)


# -----------------------------------------------------
# POST /functions/create-city-viewer
# -----------------------------------------------------
@router.post("/create-city-viewer", summary="Create city viewer login + profile")
def create_city_viewer(payload: CreateCityViewerRequest):
    try:
        data = provision_city_viewer(payload)
    except Exception as e:
        return function_error(e, "create-city-viewer")

    return FunctionResponse(success=True, message="City viewer created", data=data).model_dump(exclude_none=True)


# -----------------------------------------------------
# POST /functions/reset-coordinator-password
# -----------------------------------------------------
@router.post("/reset-coordinator-password", summary="Reset a coordinator or city viewer password")
def reset_password(payload: ResetPasswordRequest):
    try:
        data = reset_coordinator_password(payload.user_id, payload.new_password)
    except Exception as e:
        return function_error(e, "reset-coordinator-password")

    return FunctionResponse(success=True, message="Password reset", data=data).model_dump(exclude_none=True)
