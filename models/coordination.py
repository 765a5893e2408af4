# models/coordination.py

from typing import Optional, Dict, Any
from datetime import date, datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.enums import CoordinationRole, PermissionKey


# ===============================================================
# PERMISSION SET
# ===============================================================

class PermissionSet(BaseModel):
    """
    Permission key → granted flag. Absent keys are simply not granted.
    ``all`` short-circuits every other key; it is never expanded into them.
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    all: Optional[bool] = None
    payments: Optional[bool] = None
    expenses: Optional[bool] = None
    payroll: Optional[bool] = None
    financial_reports: Optional[bool] = None
    visitors: Optional[bool] = None
    qr_codes: Optional[bool] = None
    occurrences: Optional[bool] = None
    announcements: Optional[bool] = None
    action_plans: Optional[bool] = None
    service_providers: Optional[bool] = None
    residents: Optional[bool] = None
    documents: Optional[bool] = None
    space_reservations: Optional[bool] = None

    @classmethod
    def full(cls) -> "PermissionSet":
        return cls(all=True)

    @classmethod
    def empty(cls) -> "PermissionSet":
        return cls()

    @classmethod
    def from_raw(cls, raw: Any) -> "PermissionSet":
        """Build from the jsonb returned by the backend. Anything that is not a dict is empty."""
        if isinstance(raw, PermissionSet):
            return raw
        if not isinstance(raw, dict):
            return cls()
        # Only literal True grants; strings like "true" do not
        return cls(**{k: v is True for k, v in raw.items() if k in PermissionKey.list()})

    def granted(self) -> Dict[str, bool]:
        return {k: v for k, v in self.model_dump().items() if v is True}


# ===============================================================
# COORDINATION STAFF ROW (public.coordination_staff)
# ===============================================================

class CoordinationStaff(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    condominium_id: str
    user_id: Optional[str] = None
    name: str = ""
    position: str = ""
    phone: Optional[str] = None
    role: CoordinationRole
    has_system_access: bool = False
    permissions: PermissionSet = Field(default_factory=PermissionSet)
    assigned_date: Optional[date] = None
    created_at: Optional[datetime] = None

    @field_validator("permissions", mode="before")
    @classmethod
    def _coerce_permissions(cls, value):
        return PermissionSet.from_raw(value)


# ===============================================================
# RESIDENT (as listed for promotion)
# ===============================================================

class ResidentProfileSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    coordination_staff_id: Optional[str] = None


class ResidentForPromotion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    apartment_number: Optional[str] = None
    profile: ResidentProfileSummary

    @property
    def is_coordination_member(self) -> bool:
        return bool(self.profile.coordination_staff_id)
