# models/identity.py

from typing import Optional
from datetime import date
from pydantic import BaseModel, ConfigDict

from models.enums import Role, LicenseStatus


# ===============================================================
# PROFILE ROW (public.profiles)
# ===============================================================

class Profile(BaseModel):
    """
    Mirrors the profiles row linked to an auth user.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    condominium_id: Optional[str] = None
    role: Role = Role.resident
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    apartment_number: Optional[str] = None
    must_change_password: bool = False
    coordination_staff_id: Optional[str] = None
    email: Optional[str] = None


# ===============================================================
# IDENTITY (owned by the session store)
# ===============================================================

class Identity(BaseModel):
    """
    Current authenticated identity. Replaced wholesale, never mutated:
    readers either see the old identity or the new one.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None
    role: Optional[Role] = None
    condominium_id: Optional[str] = None
    coordination_staff_id: Optional[str] = None

    # None while the profile is still loading or missing
    profile: Optional[Profile] = None

    @classmethod
    def from_user(cls, user_id: str, email: Optional[str], profile: Optional[Profile]) -> "Identity":
        if profile is None:
            return cls(user_id=user_id, email=email)

        return cls(
            user_id=user_id,
            email=email,
            role=profile.role,
            condominium_id=profile.condominium_id,
            coordination_staff_id=profile.coordination_staff_id,
            profile=profile.model_copy(update={"email": email}),
        )

    @property
    def cache_key(self) -> tuple:
        return (self.user_id, self.coordination_staff_id)


# ===============================================================
# LICENSE ROW (public.licenses)
# ===============================================================

class License(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str
    end_date: date

    def is_valid_on(self, today: date) -> bool:
        if self.status == LicenseStatus.paused:
            return False
        return self.status == LicenseStatus.active and self.end_date >= today
