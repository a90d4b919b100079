from __future__ import annotations

import math
import re
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from io import BytesIO
from typing import Any

from openpyxl import load_workbook
from openpyxl.cell.rich_text import CellRichText
from openpyxl.utils.datetime import from_excel
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from demand_import.errors import InvalidWorkbook

MONTH_NAMES = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)

# Excel serials between 1954 and 2119; anything else is a quantity, not a date.
_EXCEL_SERIAL_RANGE = (20000, 80000)

_ISO_MONTH = re.compile(r"^(\d{4})-(\d{1,2})(?:-(\d{1,2}))?(?:[t ].*)?$")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_MONTH_SLASH_YEAR = re.compile(r"^(\d{1,2})/(\d{4})$")
_MONTH_NAME_YEAR = re.compile(r"^([a-z]{3,9})\.?\s*[-']?\s*(\d{4})$")


class CellKind(Enum):
    EMPTY = "empty"
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"


@dataclass(frozen=True)
class DecodedCell:
    kind: CellKind
    value: Any = None

    @property
    def is_empty(self) -> bool:
        return self.kind is CellKind.EMPTY

    @property
    def text(self) -> str:
        """Plain text rendering; numeric codes lose a trailing ``.0``."""
        if self.kind is CellKind.TEXT:
            return self.value
        if self.kind is CellKind.NUMBER:
            if float(self.value).is_integer():
                return str(int(self.value))
            return str(self.value)
        if self.kind is CellKind.DATE:
            return self.value.isoformat()
        return ""


EMPTY = DecodedCell(CellKind.EMPTY)


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).replace("\xa0", " ").strip()


def decode_cell(value: Any) -> DecodedCell:
    if value is None:
        return EMPTY
    if isinstance(value, CellRichText):
        value = str(value)
    if isinstance(value, bool):
        return DecodedCell(CellKind.TEXT, "TRUE" if value else "FALSE")
    if isinstance(value, str):
        text_value = _clean_text(value)
        return DecodedCell(CellKind.TEXT, text_value) if text_value else EMPTY
    if isinstance(value, datetime):
        return DecodedCell(CellKind.DATE, value.date())
    if isinstance(value, date):
        return DecodedCell(CellKind.DATE, value)
    if isinstance(value, (int, float, Decimal)):
        if isinstance(value, float) and not math.isfinite(value):
            return EMPTY
        return DecodedCell(CellKind.NUMBER, value)
    text_value = _clean_text(value)
    return DecodedCell(CellKind.TEXT, text_value) if text_value else EMPTY


def load_workbook_bytes(content: bytes) -> Workbook:
    try:
        return load_workbook(BytesIO(content), data_only=True, rich_text=True)
    except Exception as exc:
        raise InvalidWorkbook(f"Could not read workbook: {exc}") from exc


def row_cells(sheet: Worksheet, row_number: int) -> list[DecodedCell]:
    for row in sheet.iter_rows(min_row=row_number, max_row=row_number, values_only=True):
        return [decode_cell(v) for v in row]
    return []


def iter_data_rows(sheet: Worksheet, min_row: int = 2) -> Iterator[tuple[int, list[DecodedCell]]]:
    for row_num, row in enumerate(sheet.iter_rows(min_row=min_row, values_only=True), start=min_row):
        cells = [decode_cell(v) for v in row]
        if all(c.is_empty for c in cells):
            continue
        yield row_num, cells


def cell_at(cells: list[DecodedCell], index: int) -> DecodedCell:
    return cells[index] if 0 <= index < len(cells) else EMPTY


def _to_number(cell: DecodedCell) -> float | None:
    if cell.kind is CellKind.NUMBER:
        number = float(cell.value)
    elif cell.kind is CellKind.TEXT:
        raw = cell.value.replace(",", "").replace("$", "").strip()
        try:
            number = float(raw)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def coerce_quantity(cell: DecodedCell) -> int | None:
    number = _to_number(cell)
    if number is None:
        return None
    return int(math.floor(number))


def coerce_amount(cell: DecodedCell) -> float | None:
    number = _to_number(cell)
    if number is None:
        return None
    return round(number, 2)


def month_start(value: date) -> date:
    return date(value.year, value.month, 1)


def month_from_name(name: str, year: int | str) -> date | None:
    token = name.strip().lower()
    if len(token) < 3 or not 1900 <= int(year) <= 2999:
        return None
    for number, full_name in enumerate(MONTH_NAMES, start=1):
        if full_name.startswith(token):
            return date(int(year), number, 1)
    return None


def _month(year: int, month: int) -> date | None:
    if 1 <= month <= 12 and 1900 <= year <= 2999:
        return date(year, month, 1)
    return None


def parse_month_text(raw: str) -> date | None:
    text_value = _clean_text(raw).lower()
    if not text_value:
        return None

    match = _ISO_MONTH.match(text_value)
    if match:
        year, month = int(match.group(1)), int(match.group(2))
        return _month(year, month)

    match = _US_DATE.match(text_value)
    if match:
        month, year = int(match.group(1)), int(match.group(3))
        return _month(year, month)

    match = _MONTH_SLASH_YEAR.match(text_value)
    if match:
        month, year = int(match.group(1)), int(match.group(2))
        return _month(year, month)

    match = _MONTH_NAME_YEAR.match(text_value)
    if match:
        return month_from_name(match.group(1), match.group(2))
    return None


def cell_to_month(cell: DecodedCell) -> date | None:
    if cell.kind is CellKind.DATE:
        return month_start(cell.value)
    if cell.kind is CellKind.TEXT:
        return parse_month_text(cell.value)
    if cell.kind is CellKind.NUMBER:
        low, high = _EXCEL_SERIAL_RANGE
        if low <= float(cell.value) <= high:
            return month_start(from_excel(cell.value))
    return None
