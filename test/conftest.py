import sys
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

WIDE_START = "2000-01-01 00:00:00"
WIDE_END = "2100-01-01 00:00:00"


def staff(role: str = "manager", staff_id: str | None = None):
    from salonpos.domain.models import StaffMember

    return StaffMember(id=staff_id or f"{role}-1", full_name=f"Test {role}", role=role)


def new_repo(tmp_path: Path, name: str = "pos.db"):
    from salonpos.repositories.sqlite_repo import SqliteRepository

    repo = SqliteRepository(tmp_path / name)
    repo.init_db()
    return repo


def vat_id(repo, percentage: str = "21") -> int:
    return next(int(v.id) for v in repo.list_vat_rates() if v.percentage == Decimal(percentage))


def add_product(repo, name: str = "Massage oil", price: str = "250.00", stock: int = 0, min_stock: int = 0) -> int:
    from salonpos.domain.models import MovementDraft

    item_id = repo.add_sellable_item(name, "product", Decimal(price), vat_id(repo), True, min_stock)
    if stock:
        repo.insert_stock_movement(
            MovementDraft(
                item_id=item_id,
                kind="in",
                quantity=stock,
                reference_type="adjustment",
                reference_id=None,
                actor_id="seed",
                notes=None,
                created_at="2025-01-01 09:00:00",
            )
        )
    return item_id


def add_service(repo, name: str = "Thai massage 60 min", price: str = "800.00") -> int:
    return repo.add_sellable_item(name, "service", Decimal(price), vat_id(repo), False, 0, duration_minutes=60)
