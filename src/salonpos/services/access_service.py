from __future__ import annotations

from typing import Optional

from salonpos.domain.errors import AuthorizationError, UnauthenticatedError
from salonpos.domain.models import STAFF_ROLES, StaffMember


PERMISSIONS: dict[str, set[str]] = {
    "manage_catalog": {"admin", "manager"},
    "manage_vat_rates": {"admin"},
    "adjust_stock": {"admin", "manager"},
    "manage_customers": {"admin", "manager", "cashier"},
    "create_order": {"admin", "manager", "cashier"},
    "export_report": {"admin", "manager"},
}


class AccessService:
    """Role checks for staff handed over by the identity provider.

    Sign-in happens outside this package; everything here works on an
    explicit ``StaffMember`` value.
    """

    def can(self, staff: Optional[StaffMember], action: str) -> bool:
        if staff is None or not staff.active:
            return False
        allowed_roles = PERMISSIONS.get(action)
        if not allowed_roles:
            return False
        return staff.role in allowed_roles

    def require_staff(self, staff: Optional[StaffMember]) -> StaffMember:
        if staff is None or not str(staff.id).strip():
            raise UnauthenticatedError("A signed-in staff member is required.")
        if not staff.active:
            raise UnauthenticatedError(f"Staff member '{staff.full_name}' is not active.")
        if staff.role not in STAFF_ROLES:
            raise AuthorizationError(f"Unknown role '{staff.role}'.")
        return staff

    def require_action(self, staff: Optional[StaffMember], action: str) -> StaffMember:
        staff = self.require_staff(staff)
        if not self.can(staff, action):
            raise AuthorizationError(f"Role '{staff.role}' is not allowed to perform '{action}'.")
        return staff
