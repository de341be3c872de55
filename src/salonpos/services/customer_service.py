from __future__ import annotations

import logging
from typing import Optional

from salonpos.domain.errors import NotFoundError, ValidationError
from salonpos.domain.models import Customer, StaffMember
from salonpos.services.access_service import AccessService

log = logging.getLogger(__name__)


class CustomerService:
    def __init__(self, repo, access: AccessService | None = None):
        self.repo = repo
        self.access = access or AccessService()

    def list_customers(self) -> list[Customer]:
        return self.repo.list_customers()

    def get_customer(self, customer_id: int) -> Customer:
        c = self.repo.get_customer(int(customer_id))
        if not c:
            raise NotFoundError("Customer not found.")
        return c

    def add_customer(
        self,
        actor: StaffMember,
        first_name: str,
        last_name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> int:
        self.access.require_action(actor, "manage_customers")
        fields = self._validated(first_name, last_name, email, phone, notes)
        customer_id = self.repo.add_customer(*fields)
        log.info("customer_created customer_id=%s actor=%s", customer_id, actor.id)
        return customer_id

    def update_customer(
        self,
        actor: StaffMember,
        customer_id: int,
        first_name: str,
        last_name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> None:
        self.access.require_action(actor, "manage_customers")
        fields = self._validated(first_name, last_name, email, phone, notes)
        if not self.repo.update_customer(int(customer_id), *fields):
            raise NotFoundError("Customer not found.")
        log.info("customer_updated customer_id=%s actor=%s", customer_id, actor.id)

    def _validated(self, first_name, last_name, email, phone, notes) -> tuple:
        first = (first_name or "").strip()
        last = (last_name or "").strip()
        if not first or not last:
            raise ValidationError("First and last name are required.")
        email = (email or "").strip() or None
        if email and "@" not in email:
            raise ValidationError("Email address is not valid.")
        return first, last, email, (phone or "").strip() or None, (notes or "").strip() or None
