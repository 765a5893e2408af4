# services/provisioning.py

"""
Privileged multi-step account operations behind the edge-function routes.

Account creation is two steps (auth user, then profile procedure). When the
second step fails the auth user is deleted *before* the error is returned,
so no orphaned login survives a failed request.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple

from core.errors import (
    AuthError,
    BackendError,
    CondoSyncError,
    NotFoundError,
    PartialFailureError,
    ValidationError,
    extract_supabase_error,
)
from core.logging_config import logger
from core.supabase_helpers import (
    call_rpc,
    create_supabase_user,
    delete_supabase_user,
    safe_insert,
    safe_select,
    safe_update,
    supabase_get_user,
    update_user_password,
)
from core.utils import generate_temp_password, utc_now_iso
from models.enums import Role
from models.functions import (
    CreateCityViewerRequest,
    CreateCoordinatorRequest,
    UserEmail,
)
from models.results import RpcFailure, parse_rpc_result


EMAIL_UNAVAILABLE = "Email not available"


# -----------------------------------------------------
# Audit trail (best effort)
# -----------------------------------------------------
def write_audit_log(user_id: str, condominium_id: Optional[str], action: str, table_name: str, new_values: dict):
    try:
        safe_insert(
            "audit_logs",
            {
                "user_id": user_id,
                "condominium_id": condominium_id,
                "action": action,
                "table_name": table_name,
                "new_values": new_values,
            },
        )
    except BackendError as e:
        # The account operation already succeeded
        logger.warning(f"Audit log write failed for {table_name}: {e}")


# -----------------------------------------------------
# Create auth user + profile, compensating on failure
# -----------------------------------------------------
def create_user_with_profile(
    email: str,
    password: str,
    metadata: Dict[str, Any],
    profile_rpc: str,
    build_params: Callable[[str], Dict[str, Any]],
) -> Tuple[str, Dict[str, Any]]:
    """
    Returns ``(user_id, procedure data)``.

    Raises AuthError when the auth user cannot be created,
    BackendError(USER_CREATION_FAILED) when the API answers without a user,
    and PartialFailureError(PROFILE_ERROR or the procedure's code) after
    rolling the auth user back.
    """
    try:
        user = create_supabase_user(email, password, metadata)
    except BackendError as e:
        raise AuthError(f"Error creating user: {e.message}") from e

    if user is None or not getattr(user, "id", None):
        raise BackendError("User creation returned no user", code="USER_CREATION_FAILED")

    user_id = user.id
    logger.info(f"Auth user created: {user_id}")

    try:
        raw = call_rpc(profile_rpc, build_params(user_id))
    except BackendError as e:
        _compensate(user_id, f"Error creating profile: {e.message}", "PROFILE_ERROR")

    result = parse_rpc_result(raw)
    if isinstance(result, RpcFailure):
        _compensate(user_id, result.error, result.code or "PROFILE_ERROR")

    return user_id, result.data or {}


def _compensate(user_id: str, message: str, code: str):
    logger.warning(f"Profile step failed for {user_id}; deleting auth user ({message})")
    compensated = True
    try:
        delete_supabase_user(user_id)
    except BackendError as e:
        compensated = False
        logger.error(f"Rollback failed, auth user {user_id} is orphaned: {e}")

    raise PartialFailureError(
        message,
        code=code,
        compensated=compensated,
        details={"user_id": user_id},
    )


# -----------------------------------------------------
# Coordinators
# -----------------------------------------------------
def provision_coordinator(payload: CreateCoordinatorRequest) -> Dict[str, Any]:
    missing = payload.missing_fields()
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    coordinator = payload.coordinator
    condominium_id = payload.condominium_id
    email = coordinator.email.strip().lower()

    user_id, data = create_user_with_profile(
        email,
        coordinator.temp_password,
        {
            "first_name": coordinator.first_name,
            "last_name": coordinator.last_name,
            "phone": coordinator.phone or None,
            "role": Role.coordinator.value,
            "condominium_id": condominium_id,
            "created_by": Role.super_admin.value,
            "must_change_password": True,
        },
        "create_coordinator_profile",
        lambda uid: {
            "_user_id": uid,
            "_condominium_id": condominium_id,
            "_first_name": coordinator.first_name,
            "_last_name": coordinator.last_name,
            "_phone": coordinator.phone or None,
        },
    )

    coordinator_id = data.get("profile_id")
    write_audit_log(
        user_id,
        condominium_id,
        "CREATE",
        "coordinator_creation",
        {
            "coordinator_id": coordinator_id,
            "coordinator_email": email,
            "coordinator_name": f"{coordinator.first_name} {coordinator.last_name}",
            "created_via": "edge_function",
        },
    )

    return {
        "coordinator_id": coordinator_id,
        "user_id": user_id,
        "temp_password": coordinator.temp_password,
        "must_change_password": True,
    }


def provision_city_viewer(payload: CreateCityViewerRequest) -> Dict[str, Any]:
    missing = payload.missing_fields()
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if not payload.selected_cities:
        raise ValidationError("Select at least one city", field_name="selectedCities")

    email = payload.email.strip().lower()
    user_id, _ = create_user_with_profile(
        email,
        payload.password,
        {
            "first_name": payload.first_name,
            "last_name": payload.last_name,
            "phone": payload.phone or None,
            "role": Role.city_viewer.value,
        },
        "create_city_viewer_user",
        lambda uid: {
            "_user_id": uid,
            "_first_name": payload.first_name,
            "_last_name": payload.last_name,
            "_city_ids": payload.selected_cities,
            "_phone": payload.phone or None,
        },
    )

    logger.info(f"City viewer created: {user_id} ({len(payload.selected_cities)} cities)")
    return {"user_id": user_id}


# -----------------------------------------------------
# Password reset
# -----------------------------------------------------
def reset_coordinator_password(user_id: Optional[str], new_password: Optional[str] = None) -> Dict[str, Any]:
    if not user_id:
        raise ValidationError("userId is required", field_name="userId")

    password = new_password or generate_temp_password()

    try:
        profile = safe_select(
            "profiles",
            {"user_id": user_id},
            columns="id, first_name, last_name, role, condominium_id, user_id",
            in_filters={"role": [Role.coordinator.value, Role.city_viewer.value]},
            single=True,
        )
    except BackendError as e:
        logger.error(f"Profile lookup failed for {user_id}: {e}")
        profile = None

    if not profile:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")

    try:
        update_user_password(user_id, password)
    except BackendError as e:
        raise AuthError(f"Error resetting password: {e.message}") from e

    try:
        safe_update("profiles", {"user_id": user_id}, {"must_change_password": True, "updated_at": utc_now_iso()})
    except BackendError as e:
        raise CondoSyncError(f"Error updating profile: {e.message}", code="PROFILE_UPDATE_ERROR") from e

    write_audit_log(
        user_id,
        profile.get("condominium_id"),
        "UPDATE",
        "password_reset",
        {
            "user_id": user_id,
            "user_name": f"{profile.get('first_name')} {profile.get('last_name')}",
            "user_role": profile.get("role"),
            "reset_via": "admin_edge_function",
            "must_change_password": True,
        },
    )

    return {"new_password": password, "must_change_password": True}


# -----------------------------------------------------
# Bulk email lookup
# -----------------------------------------------------
def lookup_user_emails(user_ids: Optional[List[str]]) -> List[UserEmail]:
    """One entry per id; a failed lookup is reported inline, never raised."""
    if not isinstance(user_ids, list) or not user_ids:
        raise ValidationError("Invalid userIds array", field_name="userIds")

    results = []
    for user_id in user_ids:
        try:
            user = supabase_get_user(user_id)
            email = getattr(user, "email", None) if user else None
            results.append(UserEmail(user_id=user_id, email=email or EMAIL_UNAVAILABLE))
        except Exception as e:
            logger.error(f"Error fetching user {user_id}: {e}")
            results.append(
                UserEmail(user_id=user_id, email=EMAIL_UNAVAILABLE, error=extract_supabase_error(e))
            )
    return results
