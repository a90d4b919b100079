from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from openpyxl.workbook.workbook import Workbook

from demand_import.errors import MissingColumns
from demand_import.format_detection import MONTHLY_PO_SHEET, ExcelFormat
from demand_import.workbook import (
    CellKind,
    DecodedCell,
    cell_at,
    cell_to_month,
    coerce_amount,
    coerce_quantity,
    iter_data_rows,
    month_from_name,
    parse_month_text,
    row_cells,
)

logger = logging.getLogger(__name__)

SUMMARY_LABELS = {"total", "totals", "grand total", "sum"}
RETAILER_HEADER_TOKENS = ("retailer", "customer", "account")
_HEADER_SEPARATOR = re.compile(r"\s*[-–|]\s*")

SALES_COLUMN_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("sku", ("sku",)),
    ("retailer", ("retailer", "customer")),
    ("month", ("month", "date", "period")),
    ("units_sold", ("units sold", "qty sold", "quantity", "units")),
    ("revenue", ("revenue", "sales", "amount")),
)
REQUIRED_SALES_COLUMNS = ("sku", "retailer", "month", "units_sold")


@dataclass(frozen=True)
class ParsedRow:
    sku: str
    retailer: str
    month: date
    quantity: int
    sheet_name: str
    row_number: int


@dataclass(frozen=True)
class ParsedForecastRow(ParsedRow):
    pass


@dataclass(frozen=True)
class ParsedSalesRow(ParsedRow):
    revenue: float | None = None


@dataclass(frozen=True)
class _MonthColumn:
    index: int
    month: date
    retailer: str | None


def _is_summary_label(value: str) -> bool:
    return value.casefold() in SUMMARY_LABELS


def parse_rtl_forecast(workbook: Workbook) -> list[ParsedForecastRow]:
    """One sheet per month ("Jan 2026 PO"); retailers down column A, SKU codes across row 1."""
    rows: list[ParsedForecastRow] = []
    for sheet in workbook.worksheets:
        match = MONTHLY_PO_SHEET.search(sheet.title)
        if match is None:
            continue
        month = month_from_name(match.group(1), match.group(2))
        if month is None:
            continue

        sku_columns = [
            (idx, cell.text) for idx, cell in enumerate(row_cells(sheet, 1)) if idx > 0 and not cell.is_empty
        ]
        if not sku_columns:
            logger.info("Sheet %r has no SKU header columns; skipped", sheet.title)
            continue

        for row_num, cells in iter_data_rows(sheet):
            retailer = cell_at(cells, 0).text
            if not retailer or _is_summary_label(retailer):
                continue
            for idx, sku in sku_columns:
                quantity = coerce_quantity(cell_at(cells, idx))
                if quantity is None:
                    continue
                rows.append(
                    ParsedForecastRow(
                        sku=sku,
                        retailer=retailer,
                        month=month,
                        quantity=quantity,
                        sheet_name=sheet.title,
                        row_number=row_num,
                    )
                )
    return rows


def _split_retailer_month(header: str) -> tuple[str, date] | None:
    for separator in _HEADER_SEPARATOR.finditer(header):
        retailer = header[: separator.start()].strip()
        month = parse_month_text(header[separator.end() :])
        if retailer and month is not None:
            return retailer, month
    return None


def _classify_hop_headers(
    headers: list[DecodedCell], product_index: int
) -> tuple[int | None, list[_MonthColumn]]:
    retailer_index: int | None = None
    month_columns: list[_MonthColumn] = []
    for idx, cell in enumerate(headers):
        if idx == product_index or cell.is_empty:
            continue
        month = cell_to_month(cell) if cell.kind in (CellKind.DATE, CellKind.TEXT) else None
        if month is not None:
            month_columns.append(_MonthColumn(idx, month, None))
            continue
        if cell.kind is CellKind.TEXT:
            split = _split_retailer_month(cell.text)
            if split is not None:
                month_columns.append(_MonthColumn(idx, split[1], split[0]))
                continue
            if retailer_index is None and any(t in cell.text.casefold() for t in RETAILER_HEADER_TOKENS):
                retailer_index = idx
                continue
        logger.debug("HOP header %r in column %d is not a month column; ignored", cell.text, idx + 1)
    return retailer_index, month_columns


def parse_hop_forecast(workbook: Workbook) -> list[ParsedForecastRow]:
    """Product-per-row sheet with one column per forecast month, pivoted to one row per (SKU, month)."""
    if not workbook.worksheets:
        return []
    sheet = workbook.worksheets[0]
    headers = row_cells(sheet, 1)
    product_index = next((idx for idx, cell in enumerate(headers) if not cell.is_empty), None)
    if product_index is None:
        return []

    retailer_index, month_columns = _classify_hop_headers(headers, product_index)
    if not month_columns:
        logger.info("Sheet %r has no month columns", sheet.title)
        return []

    rows: list[ParsedForecastRow] = []
    for row_num, cells in iter_data_rows(sheet):
        sku = cell_at(cells, product_index).text
        if not sku or _is_summary_label(sku):
            continue
        row_retailer = cell_at(cells, retailer_index).text if retailer_index is not None else ""
        for column in month_columns:
            retailer = column.retailer or row_retailer
            if not retailer:
                continue
            quantity = coerce_quantity(cell_at(cells, column.index))
            if quantity is None:
                continue
            rows.append(
                ParsedForecastRow(
                    sku=sku,
                    retailer=retailer,
                    month=column.month,
                    quantity=quantity,
                    sheet_name=sheet.title,
                    row_number=row_num,
                )
            )
    return rows


def map_sales_columns(headers: list[DecodedCell]) -> dict[str, int]:
    column_map: dict[str, int] = {}
    for idx, cell in enumerate(headers):
        header = cell.text.casefold()
        if not header:
            continue
        for field, tokens in SALES_COLUMN_RULES:
            if any(token in header for token in tokens):
                column_map.setdefault(field, idx)
                break
    return column_map


def parse_retail_sales(workbook: Workbook) -> list[ParsedSalesRow]:
    if not workbook.worksheets:
        return []
    sheet = workbook.worksheets[0]
    columns = map_sales_columns(row_cells(sheet, 1))
    missing = [name for name in REQUIRED_SALES_COLUMNS if name not in columns]
    if missing:
        found = ", ".join(f"{name}=column {idx + 1}" for name, idx in columns.items()) or "none"
        raise MissingColumns(
            f"Missing required columns in retail sales file: {', '.join(missing)}. Found: {found}."
        )

    rows: list[ParsedSalesRow] = []
    for row_num, cells in iter_data_rows(sheet):
        sku = cell_at(cells, columns["sku"]).text
        retailer = cell_at(cells, columns["retailer"]).text
        if not sku or not retailer or _is_summary_label(sku):
            continue
        month = cell_to_month(cell_at(cells, columns["month"]))
        if month is None:
            logger.debug("Row %d of %r has no readable month; skipped", row_num, sheet.title)
            continue
        units_sold = coerce_quantity(cell_at(cells, columns["units_sold"]))
        revenue = coerce_amount(cell_at(cells, columns["revenue"])) if "revenue" in columns else None
        rows.append(
            ParsedSalesRow(
                sku=sku,
                retailer=retailer,
                month=month,
                quantity=units_sold if units_sold is not None else 0,
                sheet_name=sheet.title,
                row_number=row_num,
                revenue=revenue,
            )
        )
    return rows


PARSERS: dict[ExcelFormat, Callable[[Workbook], list[ParsedRow]]] = {
    ExcelFormat.RTL_FORECAST: parse_rtl_forecast,
    ExcelFormat.HOP_FORECAST: parse_hop_forecast,
    ExcelFormat.RETAIL_SALES: parse_retail_sales,
}
