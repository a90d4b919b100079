from datetime import datetime
from io import BytesIO

from openpyxl import Workbook
from sqlalchemy import text

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def workbook_bytes(wb: Workbook) -> bytes:
    out = BytesIO()
    wb.save(out)
    return out.getvalue()


def table_count(engine, table: str) -> int:
    with engine.begin() as conn:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()


def build_rtl_workbook(extra_sheet_first: bool = True) -> Workbook:
    wb = Workbook()
    if extra_sheet_first:
        wb.active.title = "Instructions"
        wb.active.append(["Fill one sheet per month"])
        january = wb.create_sheet("Jan 2026 PO")
    else:
        january = wb.active
        january.title = "Jan 2026 PO"

    january.append(["Retailer", "SKU-001", "SKU-002"])
    january.append(["Walmart", 10, None])
    january.append(["Target", 0, 5])
    january.append([None, 3, 3])
    january.append(["Total", 10, 5])

    february = wb.create_sheet("February 2026 PO")
    february.append(["Retailer", "SKU-001", 12345])
    february.append(["Walmart", 4.7, 2])
    february.append(["Costco", "oops", "3"])
    return wb


def build_hop_workbook() -> Workbook:
    wb = Workbook()
    ws = wb.active
    ws.title = "HOP Forecast"
    ws.append(["Product", "Walmart - Jan 2026", "Walmart - Feb 2026", "Target - Jan 2026"])
    ws.append(["SKU-001", 100, 120, "n/a"])
    ws.append(["SKU-002", None, 50, 7.9])
    return wb


def build_hop_month_column_workbook() -> Workbook:
    wb = Workbook()
    ws = wb.active
    ws.title = "Forecast"
    ws.append(["Item", "Retailer", "Jan 2026", datetime(2026, 2, 1), "Notes"])
    ws.append(["SKU-001", "Walmart", 5, 6, "x"])
    ws.append(["SKU-002", None, 1, 2, None])
    return wb


def build_sales_workbook() -> Workbook:
    wb = Workbook()
    ws = wb.active
    ws.title = "Sales"
    ws.append(["SKU", "Retailer", "Month", "Units Sold", "Revenue"])
    ws.append(["SKU-001", "Walmart", datetime(2026, 1, 15), 40, 399.6])
    ws.append(["SKU-002", "Target", "2026-02", 12, None])
    ws.append([12345, "Costco", "Mar 2026", "7", "$70.00"])
    ws.append(["SKU-001", "Walmart", "not a date", 5, 1])
    ws.append(["SKU-002", "Walmart", "2026-04-01", None, None])
    return wb
