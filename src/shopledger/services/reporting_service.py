from __future__ import annotations

from datetime import date
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from shopledger.domain.models import BUCKET_0_30, BUCKET_31_60, BUCKET_61_90, BUCKET_90_PLUS


class ReportingService:
    def __init__(self, payroll_service, accounts_service, tip_service):
        self.payroll = payroll_service
        self.accounts = accounts_service
        self.tips = tip_service

    def export_workbook(self, path: str, today: date, sunday: Optional[date] = None, pool: Optional[float] = None) -> None:
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

        # -------- 1) Staff balances --------
        ws = wb.active
        ws.title = "Staff Balances"
        ws.append(["Staff", "Role", "Balance"])
        bold_row(ws, 1)
        for row in self.payroll.staff_balances():
            ws.append([row.user.name, row.user.role, float(row.balance)])
            money(ws[f"C{ws.max_row}"])
        ws.freeze_panes = "A2"
        set_widths(ws, {"A": 28, "B": 10, "C": 16})
        if ws.max_row >= 2:
            add_table(ws, "StaffBalances", 1, 1, ws.max_row, 3)

        # -------- 2) Suppliers --------
        ws2 = wb.create_sheet("Suppliers")
        ws2.append(["Wholesaler", "Phone", "Contact", "Balance"])
        bold_row(ws2, 1)
        for row in self.accounts.balances():
            w = row.wholesaler
            ws2.append([w.name, w.phone or "", w.contact_person or "", float(row.balance)])
            money(ws2[f"D{ws2.max_row}"])
        total_row = ws2.max_row + 2
        ws2[f"C{total_row}"] = "Total debt"
        ws2[f"C{total_row}"].font = Font(bold=True)
        ws2[f"D{total_row}"] = float(self.accounts.total_debt())
        money(ws2[f"D{total_row}"])
        ws2.freeze_panes = "A2"
        set_widths(ws2, {"A": 28, "B": 16, "C": 22, "D": 16})

        # -------- 3) Upcoming payments --------
        ws3 = wb.create_sheet("Upcoming Payments")
        ws3["A1"] = f"Unpaid invoices due by {today.isoformat()} or soon after"
        ws3["A1"].font = Font(bold=True, size=14)
        ws3.append([])
        ws3.append(["Due date", "Days", "Wholesaler", "Invoice date", "Invoice amount", "Unpaid", "Note"])
        bold_row(ws3, 3)
        for inv in self.accounts.upcoming_payments(today):
            p = inv.purchase
            ws3.append([
                inv.due_date.isoformat(), inv.days_until_due(today), inv.wholesaler_name,
                p.date.isoformat(), float(p.amount), float(inv.unpaid_amount), p.note or "",
            ])
            money(ws3[f"E{ws3.max_row}"])
            money(ws3[f"F{ws3.max_row}"])
        ws3.freeze_panes = "A4"
        set_widths(ws3, {"A": 12, "B": 8, "C": 28, "D": 12, "E": 16, "F": 16, "G": 30})
        if ws3.max_row >= 4:
            add_table(ws3, "UpcomingPayments", 3, 1, ws3.max_row, 7)

        # -------- 4) Aging --------
        ws4 = wb.create_sheet("Aging")
        ws4.append(["Age (days)", "Amount"])
        bold_row(ws4, 1)
        aging = self.accounts.aging(today)
        for bucket in (BUCKET_0_30, BUCKET_31_60, BUCKET_61_90, BUCKET_90_PLUS):
            ws4.append([bucket, float(aging.buckets[bucket])])
            money(ws4[f"B{ws4.max_row}"])
        ws4.append(["Total", float(aging.total)])
        bold_row(ws4, ws4.max_row)
        money(ws4[f"B{ws4.max_row}"])
        set_widths(ws4, {"A": 14, "B": 16})

        # -------- 5) Tips --------
        if pool is not None:
            dist = self.tips.distribute(sunday or self.tips.suggested_sunday(today), pool)
            ws5 = wb.create_sheet("Tips")
            ws5["A1"] = f"Week {dist.window.start.isoformat()} -> {dist.window.end.isoformat()}"
            ws5["A1"].font = Font(bold=True, size=14)
            summary = [
                ("Pool", float(dist.pool)),
                ("Total hours", float(dist.total_hours)),
                ("Hourly rate", float(dist.hourly_rate)),
                ("Distributed", float(dist.distributed)),
                ("Remainder", float(dist.remainder)),
            ]
            for i, (label, val) in enumerate(summary):
                ws5[f"A{3 + i}"] = label
                ws5[f"B{3 + i}"] = val
                money(ws5[f"B{3 + i}"])
            ws5.append([])
            ws5.append(["Staff", "Hours", "Share"])
            bold_row(ws5, ws5.max_row)
            for share in dist.shares:
                ws5.append([share.user.name, float(share.hours), int(share.share)])
            set_widths(ws5, {"A": 28, "B": 12, "C": 12})

        wb.save(path)
