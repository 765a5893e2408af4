# routers/users.py

from fastapi import APIRouter

from models.functions import UserEmailsRequest
from routers.coordinators import function_error
from services.provisioning import lookup_user_emails


router = APIRouter(
    prefix="/functions",
    tags=["Edge Functions"],
)


# -----------------------------------------------------
# POST /functions/get-user-emails
# One failed lookup never fails the batch
# -----------------------------------------------------
@router.post("/get-user-emails", summary="Bulk auth email lookup")
def get_user_emails(payload: UserEmailsRequest):
    try:
        emails = lookup_user_emails(payload.user_ids)
    except Exception as e:
        return function_error(e, "get-user-emails")

    return {
        "success": True,
        "emails": [e.model_dump(by_alias=True, exclude_none=True) for e in emails],
    }
