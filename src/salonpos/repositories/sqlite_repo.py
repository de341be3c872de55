from __future__ import annotations

import sqlite3
import shutil
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Iterator, Optional

from salonpos.domain.errors import InsufficientStockError, NotFoundError, StorageUnavailableError
from salonpos.domain.models import (
    Customer,
    InventoryProjection,
    MovementDraft,
    Order,
    OrderDraft,
    OrderItem,
    OrderItemDraft,
    SellableItem,
    SellableItemView,
    StockMovement,
    VatRate,
)

_UNAVAILABLE_MARKERS = ("locked", "busy", "unable to open")

DEFAULT_VAT_RATES = (
    ("Standard 21 %", "21"),
    ("Reduced 12 %", "12"),
    ("Exempt 0 %", "0"),
)

_ITEM_VIEW_SELECT = """
    SELECT s.id, s.name, s.kind, s.unit_price, s.vat_rate_id, s.track_inventory, s.min_stock,
           s.active, s.description, s.purchase_price, s.duration_minutes,
           v.id, v.name, v.percentage, v.active,
           COALESCE(i.current_stock, 0), COALESCE(i.reserved_stock, 0)
    FROM sellable_items s
    JOIN vat_rates v ON v.id = s.vat_rate_id
    LEFT JOIN inventory i ON i.item_id = s.id
"""

_MOVEMENT_SELECT = """
    SELECT id, item_id, kind, quantity, stock_after, reference_type, reference_id,
           actor_id, notes, created_at
    FROM stock_movements
"""

_ORDER_SELECT = """
    SELECT id, order_number, customer_id, cashier_id, subtotal, vat_amount, total,
           payment_method, status, notes, created_at, updated_at
    FROM orders
"""


@contextmanager
def storage_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.OperationalError as exc:
        if any(marker in str(exc).lower() for marker in _UNAVAILABLE_MARKERS):
            raise StorageUnavailableError(f"Record store unavailable: {exc}") from exc
        raise


def _now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat(sep=" ")


def _dec(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _item_view_from_row(r) -> SellableItemView:
    item = SellableItem(
        id=int(r[0]),
        name=str(r[1]),
        kind=str(r[2]),
        unit_price=Decimal(str(r[3])),
        vat_rate_id=int(r[4]),
        track_inventory=bool(r[5]),
        min_stock=int(r[6]),
        active=bool(r[7]),
        description=(r[8] if r[8] is not None else None),
        purchase_price=_dec(r[9]),
        duration_minutes=(int(r[10]) if r[10] is not None else None),
    )
    vat = VatRate(id=int(r[11]), name=str(r[12]), percentage=Decimal(str(r[13])), active=bool(r[14]))
    inventory = InventoryProjection(item_id=item.id, current_stock=int(r[15]), reserved_stock=int(r[16]))
    return SellableItemView(item=item, vat_rate=vat, inventory=inventory)


def _movement_from_row(r) -> StockMovement:
    return StockMovement(
        id=int(r[0]),
        item_id=int(r[1]),
        kind=str(r[2]),
        quantity=int(r[3]),
        stock_after=int(r[4]),
        reference_type=str(r[5]),
        reference_id=(str(r[6]) if r[6] is not None else None),
        actor_id=(str(r[7]) if r[7] is not None else None),
        notes=(r[8] if r[8] is not None else None),
        created_at=str(r[9]),
    )


def _order_from_row(r) -> Order:
    return Order(
        id=int(r[0]),
        order_number=str(r[1]),
        customer_id=(int(r[2]) if r[2] is not None else None),
        cashier_id=str(r[3]),
        subtotal=Decimal(str(r[4])),
        vat_amount=Decimal(str(r[5])),
        total=Decimal(str(r[6])),
        payment_method=str(r[7]),
        status=str(r[8]),
        notes=(r[9] if r[9] is not None else None),
        created_at=str(r[10]),
        updated_at=str(r[11]),
    )


def _order_item_from_row(r) -> OrderItem:
    return OrderItem(
        id=int(r[0]),
        order_id=int(r[1]),
        item_id=int(r[2]),
        quantity=int(r[3]),
        unit_price=Decimal(str(r[4])),
        vat_rate=Decimal(str(r[5])),
        subtotal=Decimal(str(r[6])),
        vat_amount=Decimal(str(r[7])),
        total=Decimal(str(r[8])),
    )


class SqliteRepository:
    def __init__(self, db_path: Path | str, timeout: float = 5.0):
        self.db_path = str(db_path)
        self.timeout = float(timeout)

    def _conn(self) -> sqlite3.Connection:
        with storage_errors():
            conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
            conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Write-serialized transaction; BEGIN IMMEDIATE takes the write lock up front."""
        conn = self._conn()
        try:
            with storage_errors():
                cur = conn.cursor()
                cur.execute("BEGIN IMMEDIATE")
                try:
                    yield cur
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        finally:
            conn.close()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[tuple]:
        conn = self._conn()
        try:
            with storage_errors():
                return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[tuple]:
        conn = self._conn()
        try:
            with storage_errors():
                return conn.execute(sql, params).fetchone()
        finally:
            conn.close()

    def unit_of_work(self) -> "SqliteUnitOfWork":
        return SqliteUnitOfWork(self)

    # ---------- Schema ----------
    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_default_vat_rates),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS vat_rates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                percentage TEXT NOT NULL CHECK(CAST(percentage AS REAL) BETWEEN 0 AND 100),
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
                created_at TEXT NOT NULL
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sellable_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT,
                kind TEXT NOT NULL CHECK(kind IN ('service','product')),
                unit_price TEXT NOT NULL CHECK(CAST(unit_price AS REAL) >= 0),
                purchase_price TEXT,
                duration_minutes INTEGER,
                vat_rate_id INTEGER NOT NULL,
                track_inventory INTEGER NOT NULL DEFAULT 0 CHECK(track_inventory IN (0,1)),
                min_stock INTEGER NOT NULL DEFAULT 0 CHECK(min_stock >= 0),
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(vat_rate_id) REFERENCES vat_rates(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS inventory (
                item_id INTEGER PRIMARY KEY,
                current_stock INTEGER NOT NULL DEFAULT 0,
                reserved_stock INTEGER NOT NULL DEFAULT 0 CHECK(reserved_stock >= 0),
                updated_at TEXT NOT NULL,
                FOREIGN KEY(item_id) REFERENCES sellable_items(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS stock_movements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                item_id INTEGER NOT NULL,
                kind TEXT NOT NULL CHECK(kind IN ('in','out','adjustment','sale','return')),
                quantity INTEGER NOT NULL CHECK(quantity <> 0),
                stock_after INTEGER NOT NULL,
                reference_type TEXT NOT NULL,
                reference_id TEXT,
                actor_id TEXT,
                notes TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(item_id) REFERENCES sellable_items(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS customers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                first_name TEXT NOT NULL,
                last_name TEXT NOT NULL,
                email TEXT,
                phone TEXT,
                notes TEXT,
                created_at TEXT NOT NULL
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_number TEXT NOT NULL UNIQUE,
                customer_id INTEGER,
                cashier_id TEXT NOT NULL,
                subtotal TEXT NOT NULL,
                vat_amount TEXT NOT NULL,
                total TEXT NOT NULL,
                payment_method TEXT NOT NULL CHECK(payment_method IN ('cash','card','bank','voucher')),
                status TEXT NOT NULL CHECK(status IN ('pending','completed','cancelled')),
                notes TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(customer_id) REFERENCES customers(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS order_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_id INTEGER NOT NULL,
                item_id INTEGER NOT NULL,
                quantity INTEGER NOT NULL CHECK(quantity > 0),
                unit_price TEXT NOT NULL,
                vat_rate TEXT NOT NULL,
                subtotal TEXT NOT NULL,
                vat_amount TEXT NOT NULL,
                total TEXT NOT NULL,
                FOREIGN KEY(order_id) REFERENCES orders(id) ON DELETE CASCADE,
                FOREIGN KEY(item_id) REFERENCES sellable_items(id),
                UNIQUE(order_id, item_id)
            )
            """
        )

        cur.execute("CREATE INDEX IF NOT EXISTS idx_movements_item ON stock_movements(item_id, id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_orders_created ON orders(created_at)")

    def _migration_v2_default_vat_rates(self, cur: sqlite3.Cursor) -> None:
        cur.execute("SELECT COUNT(*) FROM vat_rates")
        if int(cur.fetchone()[0]) > 0:
            return
        now = _now_iso()
        for name, percentage in DEFAULT_VAT_RATES:
            cur.execute(
                "INSERT INTO vat_rates (name, percentage, active, created_at) VALUES (?, ?, 1, ?)",
                (name, percentage, now),
            )

    def integrity_check(self) -> str:
        row = self._fetchone("PRAGMA integrity_check")
        return str(row[0]) if row else "unknown"

    # ---------- VAT rates ----------
    def add_vat_rate(self, name: str, percentage: Decimal) -> int:
        with self._transaction() as cur:
            cur.execute(
                "INSERT INTO vat_rates (name, percentage, active, created_at) VALUES (?, ?, 1, ?)",
                (name, str(percentage), _now_iso()),
            )
            return int(cur.lastrowid)

    def list_vat_rates(self, active_only: bool = True) -> list[VatRate]:
        sql = "SELECT id, name, percentage, active FROM vat_rates"
        if active_only:
            sql += " WHERE active=1"
        rows = self._fetchall(sql + " ORDER BY CAST(percentage AS REAL) DESC, id")
        return [VatRate(id=int(r[0]), name=str(r[1]), percentage=Decimal(str(r[2])), active=bool(r[3])) for r in rows]

    def get_vat_rate(self, vat_rate_id: int) -> Optional[VatRate]:
        r = self._fetchone("SELECT id, name, percentage, active FROM vat_rates WHERE id=?", (int(vat_rate_id),))
        if not r:
            return None
        return VatRate(id=int(r[0]), name=str(r[1]), percentage=Decimal(str(r[2])), active=bool(r[3]))

    def set_vat_rate_active(self, vat_rate_id: int, active: bool) -> bool:
        with self._transaction() as cur:
            cur.execute("UPDATE vat_rates SET active=? WHERE id=?", (int(bool(active)), int(vat_rate_id)))
            return cur.rowcount > 0

    # ---------- Sellable items ----------
    def add_sellable_item(
        self,
        name: str,
        kind: str,
        unit_price: Decimal,
        vat_rate_id: int,
        track_inventory: bool,
        min_stock: int,
        description: Optional[str] = None,
        purchase_price: Optional[Decimal] = None,
        duration_minutes: Optional[int] = None,
    ) -> int:
        now = _now_iso()
        with self._transaction() as cur:
            cur.execute(
                """
                INSERT INTO sellable_items (
                    name, description, kind, unit_price, purchase_price, duration_minutes,
                    vat_rate_id, track_inventory, min_stock, active, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                """,
                (
                    name,
                    description,
                    kind,
                    str(unit_price),
                    (str(purchase_price) if purchase_price is not None else None),
                    duration_minutes,
                    int(vat_rate_id),
                    int(bool(track_inventory)),
                    int(min_stock),
                    now,
                    now,
                ),
            )
            item_id = int(cur.lastrowid)
            cur.execute(
                "INSERT INTO inventory (item_id, current_stock, reserved_stock, updated_at) VALUES (?, 0, 0, ?)",
                (item_id, now),
            )
            return item_id

    def update_sellable_item(
        self,
        item_id: int,
        name: str,
        kind: str,
        unit_price: Decimal,
        vat_rate_id: int,
        track_inventory: bool,
        min_stock: int,
        active: bool,
        description: Optional[str] = None,
        purchase_price: Optional[Decimal] = None,
        duration_minutes: Optional[int] = None,
    ) -> bool:
        with self._transaction() as cur:
            cur.execute(
                """
                UPDATE sellable_items
                SET name=?, description=?, kind=?, unit_price=?, purchase_price=?, duration_minutes=?,
                    vat_rate_id=?, track_inventory=?, min_stock=?, active=?, updated_at=?
                WHERE id=?
                """,
                (
                    name,
                    description,
                    kind,
                    str(unit_price),
                    (str(purchase_price) if purchase_price is not None else None),
                    duration_minutes,
                    int(vat_rate_id),
                    int(bool(track_inventory)),
                    int(min_stock),
                    int(bool(active)),
                    _now_iso(),
                    int(item_id),
                ),
            )
            return cur.rowcount > 0

    def deactivate_sellable_item(self, item_id: int) -> bool:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE sellable_items SET active=0, updated_at=? WHERE id=? AND active=1",
                (_now_iso(), int(item_id)),
            )
            return cur.rowcount > 0

    def list_active_sellable_items(self) -> list[SellableItemView]:
        rows = self._fetchall(_ITEM_VIEW_SELECT + " WHERE s.active=1 ORDER BY s.kind DESC, s.name")
        return [_item_view_from_row(r) for r in rows]

    def list_sellable_items(self) -> list[SellableItemView]:
        rows = self._fetchall(_ITEM_VIEW_SELECT + " ORDER BY s.active DESC, s.name")
        return [_item_view_from_row(r) for r in rows]

    def get_sellable_item(self, item_id: int) -> Optional[SellableItemView]:
        r = self._fetchone(_ITEM_VIEW_SELECT + " WHERE s.id=?", (int(item_id),))
        return _item_view_from_row(r) if r else None

    def list_low_stock(self, limit: int = 10) -> list[SellableItemView]:
        rows = self._fetchall(
            _ITEM_VIEW_SELECT
            + """
            WHERE s.active=1 AND s.track_inventory=1
              AND COALESCE(i.current_stock, 0) - COALESCE(i.reserved_stock, 0) <= s.min_stock
            ORDER BY (COALESCE(i.current_stock, 0) - COALESCE(i.reserved_stock, 0) - s.min_stock) ASC, s.name ASC
            LIMIT ?
            """,
            (int(limit),),
        )
        return [_item_view_from_row(r) for r in rows]

    # ---------- Inventory ----------
    def get_projection(self, item_id: int) -> InventoryProjection:
        r = self._fetchone(
            """
            SELECT s.id, COALESCE(i.current_stock, 0), COALESCE(i.reserved_stock, 0)
            FROM sellable_items s
            LEFT JOIN inventory i ON i.item_id = s.id
            WHERE s.id=?
            """,
            (int(item_id),),
        )
        if not r:
            raise NotFoundError("Sellable item not found.")
        return InventoryProjection(item_id=int(r[0]), current_stock=int(r[1]), reserved_stock=int(r[2]))

    def list_projections(self) -> list[InventoryProjection]:
        rows = self._fetchall("SELECT item_id, current_stock, reserved_stock FROM inventory ORDER BY item_id")
        return [InventoryProjection(item_id=int(r[0]), current_stock=int(r[1]), reserved_stock=int(r[2])) for r in rows]

    def set_reserved_stock(self, item_id: int, reserved_stock: int) -> InventoryProjection:
        with self._transaction() as cur:
            current, _reserved = self._lock_inventory_row(cur, int(item_id))
            cur.execute(
                "UPDATE inventory SET reserved_stock=?, updated_at=? WHERE item_id=?",
                (int(reserved_stock), _now_iso(), int(item_id)),
            )
            return InventoryProjection(item_id=int(item_id), current_stock=current, reserved_stock=int(reserved_stock))

    def store_rebuilt_stock(self, item_id: int, current_stock: int) -> None:
        with self._transaction() as cur:
            self._lock_inventory_row(cur, int(item_id))
            cur.execute(
                "UPDATE inventory SET current_stock=?, updated_at=? WHERE item_id=?",
                (int(current_stock), _now_iso(), int(item_id)),
            )

    def read_movements(self, item_id: int, limit: int | None = None) -> list[StockMovement]:
        """Movements of one item in creation order; with ``limit``, only the newest ones."""
        if limit is None:
            rows = self._fetchall(_MOVEMENT_SELECT + " WHERE item_id=? ORDER BY id ASC", (int(item_id),))
        else:
            rows = self._fetchall(
                _MOVEMENT_SELECT + " WHERE item_id=? ORDER BY id DESC LIMIT ?",
                (int(item_id), int(limit)),
            )
            rows = list(reversed(rows))
        return [_movement_from_row(r) for r in rows]

    def movements_between(self, start_iso: str, end_iso: str) -> list[StockMovement]:
        rows = self._fetchall(
            _MOVEMENT_SELECT + " WHERE created_at >= ? AND created_at < ? ORDER BY id ASC",
            (start_iso, end_iso),
        )
        return [_movement_from_row(r) for r in rows]

    def insert_stock_movement(
        self, draft: MovementDraft, enforce_available: bool = False
    ) -> tuple[StockMovement, InventoryProjection]:
        with self._transaction() as cur:
            return self._apply_movement(cur, draft, enforce_available)

    def _lock_inventory_row(self, cur: sqlite3.Cursor, item_id: int) -> tuple[int, int]:
        cur.execute("SELECT id FROM sellable_items WHERE id=?", (item_id,))
        if not cur.fetchone():
            raise NotFoundError("Sellable item not found.")
        cur.execute("SELECT current_stock, reserved_stock FROM inventory WHERE item_id=?", (item_id,))
        row = cur.fetchone()
        if row:
            return int(row[0]), int(row[1])
        cur.execute(
            "INSERT INTO inventory (item_id, current_stock, reserved_stock, updated_at) VALUES (?, 0, 0, ?)",
            (item_id, _now_iso()),
        )
        return 0, 0

    def _apply_movement(
        self, cur: sqlite3.Cursor, draft: MovementDraft, enforce_available: bool
    ) -> tuple[StockMovement, InventoryProjection]:
        item_id = int(draft.item_id)
        current, reserved = self._lock_inventory_row(cur, item_id)
        stock_after = current + int(draft.quantity)
        if enforce_available and draft.quantity < 0 and stock_after - reserved < 0:
            raise InsufficientStockError(
                f"Not enough stock for item {item_id}. Available: {current - reserved}"
            )

        cur.execute(
            """
            INSERT INTO stock_movements (
                item_id, kind, quantity, stock_after, reference_type, reference_id,
                actor_id, notes, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item_id,
                draft.kind,
                int(draft.quantity),
                stock_after,
                draft.reference_type,
                draft.reference_id,
                draft.actor_id,
                draft.notes,
                draft.created_at,
            ),
        )
        movement_id = int(cur.lastrowid)
        cur.execute(
            "UPDATE inventory SET current_stock=?, updated_at=? WHERE item_id=?",
            (stock_after, draft.created_at, item_id),
        )
        movement = StockMovement(
            id=movement_id,
            item_id=item_id,
            kind=draft.kind,
            quantity=int(draft.quantity),
            stock_after=stock_after,
            reference_type=draft.reference_type,
            reference_id=draft.reference_id,
            actor_id=draft.actor_id,
            notes=draft.notes,
            created_at=draft.created_at,
        )
        return movement, InventoryProjection(item_id=item_id, current_stock=stock_after, reserved_stock=reserved)

    # ---------- Customers ----------
    def add_customer(
        self,
        first_name: str,
        last_name: str,
        email: Optional[str],
        phone: Optional[str],
        notes: Optional[str],
    ) -> int:
        with self._transaction() as cur:
            cur.execute(
                """
                INSERT INTO customers (first_name, last_name, email, phone, notes, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (first_name, last_name, email, phone, notes, _now_iso()),
            )
            return int(cur.lastrowid)

    def update_customer(
        self,
        customer_id: int,
        first_name: str,
        last_name: str,
        email: Optional[str],
        phone: Optional[str],
        notes: Optional[str],
    ) -> bool:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE customers SET first_name=?, last_name=?, email=?, phone=?, notes=? WHERE id=?",
                (first_name, last_name, email, phone, notes, int(customer_id)),
            )
            return cur.rowcount > 0

    def list_customers(self) -> list[Customer]:
        rows = self._fetchall(
            "SELECT id, first_name, last_name, email, phone, notes FROM customers ORDER BY last_name, first_name"
        )
        return [Customer(int(r[0]), str(r[1]), str(r[2]), r[3], r[4], r[5]) for r in rows]

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        r = self._fetchone(
            "SELECT id, first_name, last_name, email, phone, notes FROM customers WHERE id=?",
            (int(customer_id),),
        )
        if not r:
            return None
        return Customer(int(r[0]), str(r[1]), str(r[2]), r[3], r[4], r[5])

    # ---------- Orders ----------
    def insert_order(self, draft: OrderDraft) -> Order:
        with self._transaction() as cur:
            return self._insert_order(cur, draft)

    def insert_order_items(self, order_id: int, items: Iterable[OrderItemDraft]) -> list[OrderItem]:
        with self._transaction() as cur:
            return self._insert_order_items(cur, order_id, items)

    def _insert_order(self, cur: sqlite3.Cursor, draft: OrderDraft) -> Order:
        cur.execute(
            """
            INSERT INTO orders (
                order_number, customer_id, cashier_id, subtotal, vat_amount, total,
                payment_method, status, notes, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                draft.order_number,
                draft.customer_id,
                draft.cashier_id,
                str(draft.subtotal),
                str(draft.vat_amount),
                str(draft.total),
                draft.payment_method,
                draft.status,
                draft.notes,
                draft.created_at,
                draft.created_at,
            ),
        )
        return Order(
            id=int(cur.lastrowid),
            order_number=draft.order_number,
            customer_id=draft.customer_id,
            cashier_id=draft.cashier_id,
            subtotal=draft.subtotal,
            vat_amount=draft.vat_amount,
            total=draft.total,
            payment_method=draft.payment_method,
            status=draft.status,
            notes=draft.notes,
            created_at=draft.created_at,
            updated_at=draft.created_at,
        )

    def _insert_order_items(self, cur: sqlite3.Cursor, order_id: int, items: Iterable[OrderItemDraft]) -> list[OrderItem]:
        out: list[OrderItem] = []
        for it in items:
            cur.execute(
                """
                INSERT INTO order_items (
                    order_id, item_id, quantity, unit_price, vat_rate, subtotal, vat_amount, total
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(order_id),
                    int(it.item_id),
                    int(it.quantity),
                    str(it.unit_price),
                    str(it.vat_rate),
                    str(it.subtotal),
                    str(it.vat_amount),
                    str(it.total),
                ),
            )
            out.append(
                OrderItem(
                    id=int(cur.lastrowid),
                    order_id=int(order_id),
                    item_id=int(it.item_id),
                    quantity=int(it.quantity),
                    unit_price=it.unit_price,
                    vat_rate=it.vat_rate,
                    subtotal=it.subtotal,
                    vat_amount=it.vat_amount,
                    total=it.total,
                )
            )
        return out

    def get_order(self, order_id: int) -> Optional[Order]:
        r = self._fetchone(_ORDER_SELECT + " WHERE id=?", (int(order_id),))
        return _order_from_row(r) if r else None

    def get_order_by_number(self, order_number: str) -> Optional[Order]:
        r = self._fetchone(_ORDER_SELECT + " WHERE order_number=?", (order_number,))
        return _order_from_row(r) if r else None

    def list_orders_between(self, start_iso: str, end_iso: str) -> list[Order]:
        rows = self._fetchall(
            _ORDER_SELECT + " WHERE created_at >= ? AND created_at < ? ORDER BY created_at DESC, id DESC",
            (start_iso, end_iso),
        )
        return [_order_from_row(r) for r in rows]

    def order_items_for_order(self, order_id: int) -> list[OrderItem]:
        rows = self._fetchall(
            """
            SELECT id, order_id, item_id, quantity, unit_price, vat_rate, subtotal, vat_amount, total
            FROM order_items
            WHERE order_id=?
            ORDER BY id
            """,
            (int(order_id),),
        )
        return [_order_item_from_row(r) for r in rows]

    def order_lines_between(self, start_iso: str, end_iso: str) -> list[tuple[Order, OrderItem, str]]:
        """Order items in the window, each with its header and the item name."""
        rows = self._fetchall(
            """
            SELECT oi.id, oi.order_id, oi.item_id, oi.quantity, oi.unit_price, oi.vat_rate,
                   oi.subtotal, oi.vat_amount, oi.total, s.name
            FROM order_items oi
            JOIN orders o ON o.id = oi.order_id
            JOIN sellable_items s ON s.id = oi.item_id
            WHERE o.created_at >= ? AND o.created_at < ?
            ORDER BY o.created_at, oi.id
            """,
            (start_iso, end_iso),
        )
        orders = {o.id: o for o in self.list_orders_between(start_iso, end_iso)}
        return [(orders[int(r[1])], _order_item_from_row(r), str(r[9])) for r in rows]


class SqliteUnitOfWork:
    """One sqlite transaction around a whole order commit."""

    atomic = True

    def __init__(self, repo: SqliteRepository):
        self.repo = repo
        self._conn: Optional[sqlite3.Connection] = None
        self._cur: Optional[sqlite3.Cursor] = None

    def __enter__(self) -> "SqliteUnitOfWork":
        self._conn = self.repo._conn()
        try:
            with storage_errors():
                self._cur = self._conn.cursor()
                self._cur.execute("BEGIN IMMEDIATE")
        except Exception:
            self._conn.close()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            with storage_errors():
                if exc_type is None:
                    self._conn.commit()
                else:
                    self._conn.rollback()
        finally:
            self._conn.close()
        return None

    def insert_order(self, draft: OrderDraft) -> Order:
        with storage_errors():
            return self.repo._insert_order(self._cur, draft)

    def insert_order_items(self, order_id: int, items: Iterable[OrderItemDraft]) -> list[OrderItem]:
        with storage_errors():
            return self.repo._insert_order_items(self._cur, order_id, items)

    def insert_stock_movement(
        self, draft: MovementDraft, enforce_available: bool = False
    ) -> tuple[StockMovement, InventoryProjection]:
        with storage_errors():
            return self.repo._apply_movement(self._cur, draft, enforce_available)
