from enum import Enum


class BaseStrEnum(str, Enum):
    """
    Base enum that serializes cleanly to a string
    and provides a .list() method for UI dropdowns.
    """

    def __str__(self):
        return str(self.value)

    @classmethod
    def list(cls):
        return [item.value for item in cls]


# -----------------------------------------------------
# PROFILE ROLE
# -----------------------------------------------------
class Role(BaseStrEnum):
    """Role stored on the profile row of a signed-in user."""

    super_admin = "super_admin"
    coordinator = "coordinator"
    resident = "resident"
    city_viewer = "city_viewer"


# -----------------------------------------------------
# COORDINATION STAFF ROLE
# -----------------------------------------------------
class CoordinationRole(BaseStrEnum):
    """Position family of a coordination staff member."""

    coordinator = "coordinator"
    financial = "financial"
    security = "security"
    maintenance = "maintenance"
    administration = "administration"
    secretary = "secretary"


# -----------------------------------------------------
# PERMISSION KEY
# -----------------------------------------------------
class PermissionKey(BaseStrEnum):
    all = "all"
    payments = "payments"
    expenses = "expenses"
    payroll = "payroll"
    financial_reports = "financial_reports"
    visitors = "visitors"
    qr_codes = "qr_codes"
    occurrences = "occurrences"
    announcements = "announcements"
    action_plans = "action_plans"
    service_providers = "service_providers"
    residents = "residents"
    documents = "documents"
    space_reservations = "space_reservations"


# -----------------------------------------------------
# CHANGE-FEED
# -----------------------------------------------------
class EventKind(BaseStrEnum):
    insert = "insert"
    update = "update"
    delete = "delete"


class ConnectionState(BaseStrEnum):
    """Lifecycle of one change-feed channel."""

    connecting = "connecting"
    subscribed = "subscribed"
    error = "error"
    closed = "closed"


# -----------------------------------------------------
# SESSION
# -----------------------------------------------------
class SessionState(BaseStrEnum):
    anonymous = "anonymous"
    authenticating = "authenticating"
    authenticated = "authenticated"


# -----------------------------------------------------
# LICENSE STATUS
# -----------------------------------------------------
class LicenseStatus(BaseStrEnum):
    active = "active"
    paused = "paused"
    expired = "expired"


# -----------------------------------------------------
# PAYMENT STATUS
# -----------------------------------------------------
class PaymentStatus(BaseStrEnum):
    paid = "paid"
    pending = "pending"
    overdue = "overdue"


# -----------------------------------------------------
# SYNCED ENTITY TYPES
# -----------------------------------------------------
class EntityType(BaseStrEnum):
    """Tables mirrored into local caches. Values are the table names."""

    residents = "residents"
    payments = "payments"
    visitors = "visitors"
    occurrences = "occurrences"
    action_plans = "action_plans"
    documents = "documents"
    expenses = "expenses"
    announcements = "announcements"
