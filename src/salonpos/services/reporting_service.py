from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from salonpos.domain.models import StaffMember
from salonpos.domain.pricing import ZERO
from salonpos.services.access_service import AccessService


@dataclass(frozen=True)
class OrdersSummary:
    order_count: int
    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal
    by_payment_method: dict[str, Decimal] = field(default_factory=dict)


class ReportingService:
    def __init__(self, repo, access: AccessService | None = None):
        self.repo = repo
        self.access = access or AccessService()

    def summary_between(self, start_iso: str, end_iso: str) -> OrdersSummary:
        orders = [o for o in self.repo.list_orders_between(start_iso, end_iso) if o.status == "completed"]
        by_method: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for o in orders:
            by_method[o.payment_method] += o.total
        return OrdersSummary(
            order_count=len(orders),
            subtotal=sum((o.subtotal for o in orders), ZERO),
            vat_amount=sum((o.vat_amount for o in orders), ZERO),
            total=sum((o.total for o in orders), ZERO),
            by_payment_method=dict(by_method),
        )

    def top_items_between(self, start_iso: str, end_iso: str, limit: int = 10) -> list[tuple[str, int, Decimal]]:
        units: dict[str, int] = defaultdict(int)
        revenue: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for order, item, name in self.repo.order_lines_between(start_iso, end_iso):
            if order.status != "completed":
                continue
            units[name] += item.quantity
            revenue[name] += item.total
        ranked = sorted(units, key=lambda n: (-units[n], -revenue[n], n))
        return [(name, units[name], revenue[name]) for name in ranked[:limit]]

    def export_orders_report_excel(self, actor: StaffMember, path: str, start_iso: str, end_iso: str) -> None:
        self.access.require_action(actor, "export_report")
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
            ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        summary = self.summary_between(start_iso, end_iso)
        lines = self.repo.order_lines_between(start_iso, end_iso)
        movements = self.repo.movements_between(start_iso, end_iso)

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Summary"
        ws["A1"].font = Font(bold=True, size=14)

        ws["A3"] = "Window"
        ws["B3"] = f"{start_iso}  ->  {end_iso}"

        rows = [
            ("Orders", summary.order_count, "int"),
            ("Subtotal", summary.subtotal, "money"),
            ("VAT", summary.vat_amount, "money"),
            ("Total", summary.total, "money"),
        ]
        for method, amount in sorted(summary.by_payment_method.items()):
            rows.append((f"Paid by {method}", amount, "money"))

        start_row = 5
        for i, (label, val, kind) in enumerate(rows):
            r = start_row + i
            ws[f"A{r}"] = label
            if kind == "money":
                ws[f"B{r}"] = float(val)
                money(ws[f"B{r}"])
            else:
                ws[f"B{r}"] = int(val)

        set_widths(ws, {"A": 24, "B": 34})

        # -------- 2) Order Lines --------
        ws2 = wb.create_sheet("Order Lines")
        ws2.append([
            "Order", "Datetime", "Payment", "Item",
            "Qty", "Unit Price", "VAT %", "Subtotal", "VAT", "Total",
        ])
        bold_row(ws2, 1)

        out_row = 2
        for order, item, name in lines:
            ws2.append([
                order.order_number, order.created_at, order.payment_method, name,
                int(item.quantity), float(item.unit_price), float(item.vat_rate),
                float(item.subtotal), float(item.vat_amount), float(item.total),
            ])
            for col in ("F", "H", "I", "J"):
                money(ws2[f"{col}{out_row}"])
            out_row += 1

        ws2.freeze_panes = "A2"
        set_widths(ws2, {
            "A": 16, "B": 22, "C": 10, "D": 34,
            "E": 6, "F": 14, "G": 8, "H": 14, "I": 12, "J": 14,
        })
        if ws2.max_row >= 2:
            add_table(ws2, "OrderLines", 1, 1, ws2.max_row, 10)

        # -------- 3) Stock Movements --------
        ws3 = wb.create_sheet("Stock Movements")
        ws3.append(["ID", "Datetime", "Item ID", "Kind", "Qty", "Stock After", "Reference", "Actor", "Notes"])
        bold_row(ws3, 1)
        for m in movements:
            ref = f"{m.reference_type}:{m.reference_id}" if m.reference_id else m.reference_type
            ws3.append([
                m.id, m.created_at, m.item_id, m.kind,
                int(m.quantity), int(m.stock_after), ref, m.actor_id or "", m.notes or "",
            ])
        ws3.freeze_panes = "A2"
        set_widths(ws3, {"A": 8, "B": 22, "C": 8, "D": 12, "E": 6, "F": 12, "G": 24, "H": 16, "I": 30})
        if ws3.max_row >= 2:
            add_table(ws3, "StockMovements", 1, 1, ws3.max_row, 9)

        wb.save(path)
