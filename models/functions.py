# models/functions.py

"""
Request / response bodies of the privileged edge-function routes.

Request fields are optional on purpose: missing fields are reported with
the ``MISSING_FIELDS`` code and a 400, not with a framework-level 422.
"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field


# ============================================================
# SHARED RESPONSE ENVELOPE
# ============================================================
class FunctionResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    code: Optional[str] = None


# ============================================================
# CREATE COORDINATOR
# ============================================================
class CoordinatorInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    email: Optional[str] = None
    phone: Optional[str] = None
    temp_password: Optional[str] = Field(None, alias="tempPassword")


class CreateCoordinatorRequest(BaseModel):
    condominium_id: Optional[str] = None
    coordinator: CoordinatorInput = Field(default_factory=CoordinatorInput)

    def missing_fields(self) -> List[str]:
        required = {
            "condominium_id": self.condominium_id,
            "coordinator.email": self.coordinator.email,
            "coordinator.firstName": self.coordinator.first_name,
            "coordinator.lastName": self.coordinator.last_name,
            "coordinator.tempPassword": self.coordinator.temp_password,
        }
        return [name for name, value in required.items() if not value]


# ============================================================
# CREATE CITY VIEWER
# ============================================================
class CreateCityViewerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None
    selected_cities: List[str] = Field(default_factory=list, alias="selectedCities")
    is_active: bool = Field(True, alias="isActive")

    def missing_fields(self) -> List[str]:
        required = {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "password": self.password,
        }
        return [name for name, value in required.items() if not value]


# ============================================================
# RESET PASSWORD
# ============================================================
class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(None, alias="userId")
    new_password: Optional[str] = Field(None, alias="newPassword")


# ============================================================
# BULK EMAIL LOOKUP
# ============================================================
class UserEmailsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_ids: Optional[List[str]] = Field(None, alias="userIds")


class UserEmail(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    email: str
    error: Optional[str] = None
