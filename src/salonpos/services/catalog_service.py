from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from salonpos.domain.errors import InvalidPricingInput, NotFoundError, ValidationError
from salonpos.domain.models import ITEM_KINDS, SellableItemView, StaffMember, VatRate
from salonpos.domain.pricing import to_decimal
from salonpos.services.access_service import AccessService

log = logging.getLogger(__name__)

DEFAULT_VAT_PERCENTAGE = Decimal("21")


class CatalogService:
    def __init__(self, repo, access: AccessService | None = None):
        self.repo = repo
        self.access = access or AccessService()

    def list_active_items(self) -> list[SellableItemView]:
        return self.repo.list_active_sellable_items()

    def list_items(self) -> list[SellableItemView]:
        return self.repo.list_sellable_items()

    def get_item(self, item_id: int) -> SellableItemView:
        view = self.repo.get_sellable_item(int(item_id))
        if not view:
            raise NotFoundError("Sellable item not found.")
        return view

    def list_vat_rates(self) -> list[VatRate]:
        return self.repo.list_vat_rates(active_only=True)

    def default_vat_rate(self) -> Optional[VatRate]:
        rates = self.list_vat_rates()
        for rate in rates:
            if rate.percentage == DEFAULT_VAT_PERCENTAGE:
                return rate
        return rates[0] if rates else None

    def add_vat_rate(self, actor: StaffMember, name: str, percentage) -> int:
        self.access.require_action(actor, "manage_vat_rates")
        name = (name or "").strip()
        if not name:
            raise ValidationError("VAT rate name is required.")
        value = self._money(percentage, "VAT percentage")
        if value > 100:
            raise InvalidPricingInput("VAT percentage must be between 0 and 100.")
        return self.repo.add_vat_rate(name, value)

    def add_item(
        self,
        actor: StaffMember,
        name: str,
        kind: str,
        price,
        vat_rate_id: int | None = None,
        track_inventory: bool = False,
        min_stock: int = 0,
        description: Optional[str] = None,
        purchase_price=None,
        duration_minutes: Optional[int] = 60,
    ) -> int:
        self.access.require_action(actor, "manage_catalog")
        fields = self._validated(
            name, kind, price, vat_rate_id, track_inventory, min_stock, description, purchase_price, duration_minutes
        )
        item_id = self.repo.add_sellable_item(**fields)
        log.info("item_created item_id=%s kind=%s actor=%s", item_id, fields["kind"], actor.id)
        return item_id

    def update_item(
        self,
        actor: StaffMember,
        item_id: int,
        name: str,
        kind: str,
        price,
        vat_rate_id: int,
        track_inventory: bool,
        min_stock: int = 0,
        active: bool = True,
        description: Optional[str] = None,
        purchase_price=None,
        duration_minutes: Optional[int] = 60,
    ) -> None:
        self.access.require_action(actor, "manage_catalog")
        fields = self._validated(
            name, kind, price, vat_rate_id, track_inventory, min_stock, description, purchase_price, duration_minutes
        )
        updated = self.repo.update_sellable_item(int(item_id), active=bool(active), **fields)
        if not updated:
            raise NotFoundError("Sellable item not found.")
        log.info("item_updated item_id=%s actor=%s", item_id, actor.id)

    def deactivate_item(self, actor: StaffMember, item_id: int) -> None:
        self.access.require_action(actor, "manage_catalog")
        if not self.repo.deactivate_sellable_item(int(item_id)):
            raise NotFoundError("Sellable item not found.")
        log.info("item_deactivated item_id=%s actor=%s", item_id, actor.id)

    def _money(self, value, label: str) -> Decimal:
        amount = to_decimal(value)
        if not amount.is_finite() or amount < 0:
            raise InvalidPricingInput(f"{label} must be >= 0.")
        return amount

    def _validated(
        self,
        name: str,
        kind: str,
        price,
        vat_rate_id: int | None,
        track_inventory: bool,
        min_stock: int,
        description: Optional[str],
        purchase_price,
        duration_minutes: Optional[int],
    ) -> dict:
        name = (name or "").strip()
        kind = (kind or "").strip().lower()
        if not name:
            raise ValidationError("Name is required.")
        if kind not in ITEM_KINDS:
            raise ValidationError(f"Kind must be one of: {', '.join(ITEM_KINDS)}.")

        unit_price = self._money(price, "Price")
        cost = self._money(purchase_price, "Purchase price") if purchase_price not in (None, "") else None

        if vat_rate_id is None:
            default = self.default_vat_rate()
            if default is None:
                raise ValidationError("No active VAT rate configured.")
            vat_rate_id = int(default.id)
        vat = self.repo.get_vat_rate(int(vat_rate_id))
        if not vat or not vat.active:
            raise ValidationError("VAT rate not found or inactive.")

        if duration_minutes is not None and int(duration_minutes) <= 0:
            raise ValidationError("Duration must be > 0 minutes.")
        if track_inventory and int(min_stock) < 0:
            raise ValidationError("Min stock must be >= 0.")

        return {
            "name": name,
            "kind": kind,
            "unit_price": unit_price,
            "vat_rate_id": int(vat_rate_id),
            "track_inventory": bool(track_inventory),
            # min stock only means something for tracked items
            "min_stock": int(min_stock) if track_inventory else 0,
            "description": (description or "").strip() or None,
            "purchase_price": cost,
            "duration_minutes": (int(duration_minutes) if duration_minutes is not None else None),
        }
