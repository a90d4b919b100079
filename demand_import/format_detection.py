from __future__ import annotations

import logging
import re
from enum import Enum

from openpyxl.workbook.workbook import Workbook

from demand_import.errors import FormatUndetected
from demand_import.workbook import row_cells

logger = logging.getLogger(__name__)

MONTHLY_PO_SHEET = re.compile(
    r"\b(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?\s+(\d{4})\s+po\b",
    re.IGNORECASE,
)
SALES_TOKENS = ("units sold", "qty sold", "revenue", "sales")
HOP_FIRST_HEADER_TOKENS = ("product", "item")


class ExcelFormat(str, Enum):
    RTL_FORECAST = "RTL_FORECAST"
    HOP_FORECAST = "HOP_FORECAST"
    RETAIL_SALES = "RETAIL_SALES"

    @property
    def is_forecast(self) -> bool:
        return self in (ExcelFormat.RTL_FORECAST, ExcelFormat.HOP_FORECAST)

    @property
    def is_sales(self) -> bool:
        return self is ExcelFormat.RETAIL_SALES


def header_tokens(workbook: Workbook) -> list[str]:
    if not workbook.worksheets:
        return []
    return [c.text.casefold() for c in row_cells(workbook.worksheets[0], 1) if not c.is_empty]


def detect_format(workbook: Workbook) -> ExcelFormat:
    """Classify a workbook; the first matching rule wins.

    Monthly PO sheet names are checked across every sheet before any header
    inspection, because sales and HOP headers can overlap.
    """
    sheet_names = list(workbook.sheetnames)
    if any(MONTHLY_PO_SHEET.search(name) for name in sheet_names):
        return ExcelFormat.RTL_FORECAST

    if not sheet_names:
        raise FormatUndetected("Unable to detect Excel format: workbook has no sheets.")

    headers = header_tokens(workbook)
    has_sku = any("sku" in h for h in headers)
    has_sales = any(token in h for h in headers for token in SALES_TOKENS)
    if has_sku and has_sales:
        return ExcelFormat.RETAIL_SALES

    first_header = headers[0] if headers else ""
    if any(token in first_header for token in HOP_FIRST_HEADER_TOKENS):
        return ExcelFormat.HOP_FORECAST

    logger.info("Format detection failed sheets=%s headers=%s", sheet_names, headers)
    raise FormatUndetected(
        "Unable to detect Excel format. "
        f"Sheet names: {', '.join(sheet_names)}. "
        f"First row headers: {', '.join(headers) or '(none)'}"
    )
