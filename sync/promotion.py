# sync/promotion.py

"""
Resident ⇄ coordination promotion workflow.

    resident (no staff link) --promote--> promoted --remove--> resident

Both transitions are single backend procedures, so either everything takes
effect or nothing does. Neither call touches the permission resolver: the
resolver learns about the change from the coordination_staff feed.
"""

from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from core.errors import BackendError, NotFoundError, ValidationError
from core.logging_config import logger
from core.notifications import Notifier
from core.permissions import ROLE_PERMISSIONS
from models.coordination import ResidentForPromotion
from models.enums import CoordinationRole
from models.results import RpcFailure, parse_rpc_result


PROMOTE_RPC = "promote_resident_to_coordination"
REMOVE_RPC = "remove_from_coordination"

RESIDENT_COLUMNS = (
    "id, apartment_number, "
    "profile:profiles!inner(id, first_name, last_name, phone, coordination_staff_id)"
)


class PromotionWorkflow:
    def __init__(self, backend, notifier: Notifier, tenant_scope: Optional[str]):
        self.backend = backend
        self.notifier = notifier
        self.tenant_scope = tenant_scope
        self.residents: List[ResidentForPromotion] = []
        self.loading = False

    # ------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------
    async def fetch_residents(self) -> List[ResidentForPromotion]:
        if not self.tenant_scope:
            return self.residents

        self.loading = True
        try:
            rows = await self.backend.select(
                "residents",
                {"condominium_id": self.tenant_scope},
                columns=RESIDENT_COLUMNS,
                order="apartment_number",
            )
            residents = []
            for row in rows:
                try:
                    residents.append(ResidentForPromotion(**row))
                except PydanticValidationError as e:
                    logger.warning(f"Skipping resident {row.get('id')} without a readable profile: {e}")
            self.residents = residents
        except BackendError as e:
            logger.error(f"Error fetching residents for promotion: {e}")
            self.notifier.error("Failed to load residents", str(e), retryable=True)
        finally:
            self.loading = False

        return self.residents

    def available_residents(self) -> List[ResidentForPromotion]:
        return [r for r in self.residents if not r.is_coordination_member]

    def coordination_members(self) -> List[ResidentForPromotion]:
        return [r for r in self.residents if r.is_coordination_member]

    def _find(self, resident_id: str) -> Optional[ResidentForPromotion]:
        return next((r for r in self.residents if r.id == resident_id), None)

    def _find_by_staff(self, staff_id: str) -> Optional[ResidentForPromotion]:
        return next((r for r in self.residents if r.profile.coordination_staff_id == staff_id), None)

    # ------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------
    async def promote(
        self,
        resident_id: str,
        role: CoordinationRole,
        position: str,
        has_system_access: bool = True,
    ) -> dict:
        """
        Link the resident to a new staff record with ``role``'s permission
        template. Raises ValidationError for a resident who is already a
        member, BackendError when the procedure fails.
        """
        if not resident_id:
            raise ValidationError("Resident is required", field_name="resident_id")
        role = CoordinationRole(role)
        if role.value not in ROLE_PERMISSIONS:
            raise ValidationError(f"Unknown coordination role {role}", field_name="role")
        if not position or not position.strip():
            raise ValidationError("Position is required", field_name="position")

        resident = self._find(resident_id)
        if resident is not None and resident.is_coordination_member:
            raise ValidationError("Resident is already a coordination member", field_name="resident_id")

        data = await self._run(
            PROMOTE_RPC,
            {
                "_resident_id": resident_id,
                "_role": role.value,
                "_position": position.strip(),
                "_has_system_access": has_system_access,
            },
            failure_title="Failed to promote resident",
        )

        self.notifier.success("Resident promoted to coordination")
        await self.fetch_residents()
        return data

    async def remove(self, staff_id: str) -> dict:
        """
        Delete the staff record and clear the resident's link.
        Raises NotFoundError when the staff record does not exist.
        """
        if not staff_id:
            raise ValidationError("Coordination staff id is required", field_name="staff_id")

        if self._find_by_staff(staff_id) is None:
            row = await self.backend.select("coordination_staff", {"id": staff_id}, columns="id", single=True)
            if not row:
                raise NotFoundError(f"Coordination staff {staff_id} not found")

        data = await self._run(
            REMOVE_RPC,
            {"_coordination_staff_id": staff_id},
            failure_title="Failed to remove member",
        )

        self.notifier.success("Member removed from coordination")
        await self.fetch_residents()
        return data

    async def _run(self, name: str, params: dict, failure_title: str) -> dict:
        try:
            raw = await self.backend.rpc(name, params)
        except BackendError as e:
            self.notifier.error(failure_title, str(e), retryable=True)
            raise

        result = parse_rpc_result(raw)
        if isinstance(result, RpcFailure):
            logger.warning(f"{name} refused: {result.error} ({result.code})")
            self.notifier.error(failure_title, result.error)
            if result.code == "NOT_FOUND":
                raise NotFoundError(result.error)
            raise BackendError(result.error, code=result.code or "RPC_FAILED")

        return result.data or {}
