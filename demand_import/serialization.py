from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from demand_import.parsers import ParsedForecastRow, ParsedSalesRow
from demand_import.validation import ResolvedRow, RowIssue, ValidationOutcome
from demand_import.workbook import month_start

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def serialize_row(resolved: ResolvedRow) -> dict[str, Any]:
    row = resolved.row
    payload: dict[str, Any] = {
        "sku_id": resolved.sku_id,
        "retailer_id": resolved.retailer_id,
        "sku": row.sku,
        "retailer": row.retailer,
        "month": row.month.isoformat(),
        "sheet_name": row.sheet_name,
        "row_number": row.row_number,
    }
    if isinstance(row, ParsedSalesRow):
        payload["units_sold"] = row.quantity
        payload["revenue"] = row.revenue
    else:
        payload["forecasted_units"] = row.quantity
    return payload


def serialize_issue(issue: RowIssue) -> dict[str, Any]:
    return {
        "sheet": issue.row.sheet_name,
        "row": issue.row.row_number,
        "field": issue.field,
        "reason": issue.reason.value,
        "message": issue.message,
    }


def serialize_outcome(outcome: ValidationOutcome) -> dict[str, Any]:
    return {
        "valid": [serialize_row(r) for r in outcome.valid_rows],
        "errors": [serialize_issue(i) for i in outcome.errors],
        "warnings": [serialize_issue(i) for i in outcome.warnings],
        "summary": outcome.summary,
    }


def decode_month(value: Any) -> date:
    """Parse a wire month (``YYYY-MM-DD`` or a full ISO timestamp) to the first of its month."""
    if isinstance(value, datetime):
        return month_start(value.date())
    if isinstance(value, date):
        return month_start(value)
    if not isinstance(value, str):
        raise ValueError(f"month must be an ISO-8601 string, got {type(value).__name__}")
    return month_start(date.fromisoformat(value.strip()[:10]))


def _decode_int(payload: Mapping[str, Any], name: str) -> int:
    value = payload.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"{name} must be an integer")
    if isinstance(value, int):
        number = value
    else:
        try:
            number = int(value) if isinstance(value, str) else value
        except ValueError:
            number = float(value)
        if isinstance(number, float):
            if not number.is_integer():
                raise ValueError(f"{name} must be an integer")
            number = int(number)
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise ValueError(f"{name} is out of range")
    return number


def _common_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "sku": str(payload.get("sku") or ""),
        "retailer": str(payload.get("retailer") or ""),
        "month": decode_month(payload.get("month")),
        "sheet_name": str(payload.get("sheet_name") or ""),
        "row_number": _decode_int(payload, "row_number") if payload.get("row_number") is not None else 0,
    }


def deserialize_forecast_row(payload: Mapping[str, Any]) -> ResolvedRow:
    row = ParsedForecastRow(quantity=_decode_int(payload, "forecasted_units"), **_common_fields(payload))
    return ResolvedRow(row=row, sku_id=_decode_int(payload, "sku_id"), retailer_id=_decode_int(payload, "retailer_id"))


def deserialize_sales_row(payload: Mapping[str, Any]) -> ResolvedRow:
    revenue = payload.get("revenue")
    if revenue is not None:
        if isinstance(revenue, bool):
            raise ValueError("revenue must be a number")
        revenue = float(revenue)
        if not math.isfinite(revenue):
            raise ValueError("revenue must be a finite number")
    row = ParsedSalesRow(
        quantity=_decode_int(payload, "units_sold"),
        revenue=revenue,
        **_common_fields(payload),
    )
    return ResolvedRow(row=row, sku_id=_decode_int(payload, "sku_id"), retailer_id=_decode_int(payload, "retailer_id"))
