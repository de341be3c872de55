from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from salonpos.domain.models import InventoryProjection, RecordId
from salonpos.services.stock_ledger import StockLedger


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectionDrift:
    item_id: RecordId
    stored_stock: int
    replayed_stock: int


@dataclass(frozen=True)
class HealthReport:
    sqlite_integrity: str
    items_checked: int
    generated_at: str
    drift: list[ProjectionDrift] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.sqlite_integrity == "ok" and not self.drift


class OperationsService:
    """Checks that every stored inventory row still equals the fold of its movements."""

    def __init__(self, repo, ledger: StockLedger):
        self.repo = repo
        self.ledger = ledger

    def run_health_check(self) -> HealthReport:
        integrity = self.repo.integrity_check()
        drift: list[ProjectionDrift] = []
        projections = self.repo.list_projections()
        for stored in projections:
            replayed = self.ledger.replay_projection(stored.item_id)
            if replayed.current_stock != stored.current_stock:
                drift.append(
                    ProjectionDrift(
                        item_id=stored.item_id,
                        stored_stock=stored.current_stock,
                        replayed_stock=replayed.current_stock,
                    )
                )
        if drift:
            log.warning("projection_drift items=%s", [d.item_id for d in drift])
        return HealthReport(
            sqlite_integrity=integrity,
            items_checked=len(projections),
            generated_at=datetime.now().isoformat(timespec="seconds"),
            drift=drift,
        )

    def rebuild_projection(self, item_id: RecordId) -> InventoryProjection:
        replayed = self.ledger.replay_projection(item_id)
        self.repo.store_rebuilt_stock(item_id, replayed.current_stock)
        log.warning("projection_rebuilt item_id=%s current=%s", item_id, replayed.current_stock)
        return replayed
