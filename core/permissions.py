# ============================================
# CENTRALIZED COORDINATION ROLE → PERMISSIONS MAP
# ============================================
# Template proposed for a staff record when a resident is promoted.
# Once stored, the staff row is the source of truth; this map is not
# consulted again when permissions are resolved.
ROLE_PERMISSIONS = {

    # =====================================================
    # COORDINATOR: Full access to everything
    # =====================================================
    "coordinator": ["all"],

    # =====================================================
    # FINANCIAL
    # =====================================================
    "financial": [
        "payments",
        "expenses",
        "payroll",
        "financial_reports",
    ],

    # =====================================================
    # SECURITY
    # =====================================================
    "security": [
        "visitors",
        "qr_codes",
        "occurrences",
    ],

    # =====================================================
    # MAINTENANCE
    # =====================================================
    "maintenance": [
        "occurrences",
        "action_plans",
        "service_providers",
        "space_reservations",
    ],

    # =====================================================
    # ADMINISTRATION
    # =====================================================
    "administration": [
        "residents",
        "documents",
        "announcements",
        "service_providers",
        "space_reservations",
    ],

    # =====================================================
    # SECRETARY
    # =====================================================
    "secretary": [
        "announcements",
        "documents",
        "residents",
    ],
}


def default_permissions_for(role: str) -> dict:
    """Permission jsonb for a freshly promoted member of ``role``."""
    return {key: True for key in ROLE_PERMISSIONS.get(str(role), [])}
