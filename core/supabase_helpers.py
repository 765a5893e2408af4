# core/supabase_helpers.py

from typing import Any, Dict, List, Optional

from core.utils import sanitize
from core.errors import supabase_error, BackendError
from core.supabase_client import get_supabase_client


# =================================================================
#  SERVICE-ROLE HELPERS: used by the edge-function routes only.
#  The client-side sync layer goes through core.backend instead.
# =================================================================

def _admin_client():
    client = get_supabase_client()
    if client is None:
        raise BackendError("Supabase client not configured", code="NOT_CONFIGURED")
    return client


def safe_select(
    table: str,
    filters: dict = None,
    *,
    columns: str = "*",
    in_filters: Optional[Dict[str, List[Any]]] = None,
    single=False,
):
    """Safe table SELECT (not for auth.users)."""
    client = _admin_client()

    try:
        query = client.table(table).select(columns)
        for key, val in (filters or {}).items():
            query = query.eq(key, val)
        for key, values in (in_filters or {}).items():
            query = query.in_(key, values)

        if single:
            result = query.maybe_single().execute()
            return result.data if result is not None else None

        return query.execute().data or []

    except Exception as e:
        supabase_error(e, f"Failed to fetch from {table}")


def safe_insert(table: str, data: dict):
    """Safe INSERT for non-auth tables."""
    client = _admin_client()
    cleaned = sanitize(data)

    try:
        result = client.table(table).insert(cleaned).execute()
        return result.data[0] if result.data else None

    except Exception as e:
        supabase_error(e, f"Failed to insert into {table}")


def safe_update(table: str, filters: dict, data: dict):
    """Safe UPDATE for non-auth tables."""
    client = _admin_client()
    cleaned = sanitize(data)

    try:
        query = client.table(table).update(cleaned)
        for key, val in filters.items():
            query = query.eq(key, val)

        result = query.execute()
        return result.data[0] if result.data else None

    except Exception as e:
        supabase_error(e, f"Failed to update {table}")


def call_rpc(name: str, params: dict):
    """Invoke a server-side procedure and return its raw JSON result."""
    client = _admin_client()

    try:
        return client.rpc(name, params).execute().data

    except Exception as e:
        supabase_error(e, f"Procedure {name} failed")


# =================================================================
#  SUPABASE AUTH ADMIN HELPERS
# =================================================================

def create_supabase_user(email: str, password: str, metadata: dict = None):
    """
    Create a confirmed user via Supabase Auth Admin API.
    Returns the created user (may be None if the API answered without one).
    """
    client = _admin_client()

    try:
        result = client.auth.admin.create_user(
            {
                "email": email,
                "password": password,
                # Accounts are handed out by an admin, skip the verification mail
                "email_confirm": True,
                "user_metadata": metadata or {},
            }
        )
        return result.user

    except Exception as e:
        supabase_error(e, "Failed to create Supabase Auth user")


def delete_supabase_user(user_id: str):
    """Delete an auth user. Used to roll back a half-created account."""
    client = _admin_client()

    try:
        client.auth.admin.delete_user(user_id)

    except Exception as e:
        supabase_error(e, "Failed to delete Supabase Auth user")


def update_user_password(user_id: str, password: str):
    client = _admin_client()

    try:
        result = client.auth.admin.update_user_by_id(user_id, {"password": password})
        return result.user

    except Exception as e:
        supabase_error(e, "Failed to update Supabase user password")


def supabase_get_user(user_id: str):
    """
    Fetch a Supabase Auth user by ID.
    """
    client = _admin_client()

    try:
        result = client.auth.admin.get_user_by_id(user_id)
        return result.user

    except Exception as e:
        supabase_error(e, "Failed to fetch Supabase user")
