# core/supabase_client.py

from typing import Optional
from supabase import create_client, acreate_client, Client, AsyncClient
from core.config import settings
from core.logging_config import logger


# ============================================================
# Supabase Admin Client Factory (service role, edge functions)
# ============================================================

def get_supabase_client() -> Optional[Client]:
    """
    Creates a Supabase client using the SERVICE ROLE KEY.
    REQUIRED for:
        - auth.admin.create_user
        - auth.admin.delete_user (rollback of half-created coordinators)
        - auth.admin.update_user_by_id
        - auth.admin.get_user_by_id
    Never handed to the client-side sync layer.
    """
    try:
        supabase_url = settings.SUPABASE_URL
        supabase_key = settings.SUPABASE_SERVICE_ROLE_KEY  # MUST be service-role

        if not supabase_url or not supabase_key:
            logger.error("Missing Supabase credentials")
            logger.error(f"   URL: {supabase_url}")
            logger.error(f"   SERVICE ROLE KEY: {'SET' if supabase_key else 'MISSING'}")
            return None

        return create_client(supabase_url, supabase_key)

    except Exception as e:
        logger.error(f"Supabase Init Error: {e}", exc_info=True)
        return None


# ============================================================
# Async client for the sync layer (anon key, user session)
# ============================================================

async def get_async_client() -> Optional[AsyncClient]:
    """
    Creates the async client used by the sync layer. It signs in as the
    end user with the ANON KEY; row-level security scopes what it sees.
    Realtime channels are only available on the async client.
    """
    try:
        supabase_url = settings.SUPABASE_URL
        supabase_key = settings.SUPABASE_ANON_KEY

        if not supabase_url or not supabase_key:
            logger.error("Missing Supabase credentials for the sync client")
            logger.error(f"   URL: {supabase_url}")
            logger.error(f"   ANON KEY: {'SET' if supabase_key else 'MISSING'}")
            return None

        return await acreate_client(supabase_url, supabase_key)

    except Exception as e:
        logger.error(f"Supabase Async Init Error: {e}", exc_info=True)
        return None


# ============================================================
# Ping Supabase for health checks
# ============================================================

def ping_supabase() -> dict:
    """
    Simple connectivity check.
    Does NOT query auth tables.
    """
    try:
        client = get_supabase_client()
        if client is None:
            return {"service": "Supabase", "status": "not_configured"}

        tables = ["condominiums", "profiles", "coordination_staff", "licenses"]
        results = {}

        for t in tables:
            try:
                res = client.table(t).select("id").limit(1).execute()
                results[t] = {
                    "status": "ok",
                    "rows_found": len(res.data or [])
                }
            except Exception as err:
                results[t] = {"status": "error", "detail": str(err)}

        return {
            "service": "Supabase",
            "status": "ok",
            "tables": results,
        }

    except Exception as e:
        logger.error(f"Supabase Ping Error: {e}", exc_info=True)
        return {"service": "Supabase", "status": "error", "detail": str(e)}
