# -------------------------
# Enums
# -------------------------
from .enums import (
    Role,
    CoordinationRole,
    PermissionKey,
    EventKind,
    ConnectionState,
    SessionState,
    LicenseStatus,
    PaymentStatus,
    EntityType,
)

# -------------------------
# Identity / Session
# -------------------------
from .identity import (
    Profile,
    Identity,
    License,
)

# -------------------------
# Coordination
# -------------------------
from .coordination import (
    PermissionSet,
    CoordinationStaff,
    ResidentProfileSummary,
    ResidentForPromotion,
)

# -------------------------
# Change-feed
# -------------------------
from .events import (
    ChangeEvent,
    ChannelHandlers,
)

# -------------------------
# Financial
# -------------------------
from .financial import (
    FinancialStats,
    Payment,
)

# -------------------------
# RPC results
# -------------------------
from .results import (
    RpcSuccess,
    RpcFailure,
    parse_rpc_result,
)

__all__ = [
    # enums
    "Role",
    "CoordinationRole",
    "PermissionKey",
    "EventKind",
    "ConnectionState",
    "SessionState",
    "LicenseStatus",
    "PaymentStatus",
    "EntityType",

    # identity
    "Profile",
    "Identity",
    "License",

    # coordination
    "PermissionSet",
    "CoordinationStaff",
    "ResidentProfileSummary",
    "ResidentForPromotion",

    # change-feed
    "ChangeEvent",
    "ChannelHandlers",

    # financial
    "FinancialStats",
    "Payment",

    # rpc
    "RpcSuccess",
    "RpcFailure",
    "parse_rpc_result",
]
