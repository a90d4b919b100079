from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from demand_import.config import settings
from demand_import.parsers import ParsedRow

logger = logging.getLogger(__name__)

CompositeKey = tuple[int, int, date]

_WHITESPACE = re.compile(r"\s+")


class IssueReason(str, Enum):
    UNKNOWN_SKU = "UNKNOWN_SKU"
    UNKNOWN_RETAILER = "UNKNOWN_RETAILER"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    ZERO_QUANTITY = "ZERO_QUANTITY"
    FAR_FUTURE_MONTH = "FAR_FUTURE_MONTH"
    FAR_PAST_MONTH = "FAR_PAST_MONTH"
    DUPLICATE_KEY = "DUPLICATE_KEY"


@dataclass(frozen=True)
class ResolvedRow:
    row: ParsedRow
    sku_id: int
    retailer_id: int

    @property
    def key(self) -> CompositeKey:
        return (self.sku_id, self.retailer_id, self.row.month)


@dataclass(frozen=True)
class RowIssue:
    row: ParsedRow
    reason: IssueReason
    field: str
    message: str


@dataclass
class ValidationOutcome:
    valid: dict[CompositeKey, ResolvedRow] = field(default_factory=dict)
    errors: list[RowIssue] = field(default_factory=list)
    warnings: list[RowIssue] = field(default_factory=list)
    total_rows: int = 0

    @property
    def valid_rows(self) -> list[ResolvedRow]:
        return list(self.valid.values())

    @property
    def summary(self) -> dict[str, Any]:
        return {
            "total_rows": self.total_rows,
            "valid_rows": len(self.valid),
            "error_rows": len({issue.row for issue in self.errors}),
            "warning_rows": len({issue.row for issue in self.warnings}),
            "errors_by_reason": dict(Counter(issue.reason.value for issue in self.errors)),
            "warnings_by_reason": dict(Counter(issue.reason.value for issue in self.warnings)),
        }


@dataclass(frozen=True)
class MasterData:
    skus: dict[str, int]
    retailers: dict[str, int]
    case_insensitive: bool = True

    def sku_id(self, sku: str) -> int | None:
        return self.skus.get(normalize_key(sku, self.case_insensitive))

    def retailer_id(self, retailer: str) -> int | None:
        return self.retailers.get(normalize_key(retailer, self.case_insensitive))


def normalize_key(value: str, case_insensitive: bool = True) -> str:
    normalized = _WHITESPACE.sub(" ", str(value).replace("\xa0", " ")).strip()
    return normalized.casefold() if case_insensitive else normalized


def _lookup(pairs: Iterable[Any], case_insensitive: bool) -> dict[str, int]:
    lookup: dict[str, int] = {}
    for row in pairs:
        key = normalize_key(row["label"], case_insensitive)
        if key in lookup:
            logger.warning("Master data label %r is ambiguous after normalization; keeping id %s", row["label"], lookup[key])
            continue
        lookup[key] = int(row["id"])
    return lookup


def load_master_data(db: Session, case_insensitive: bool | None = None) -> MasterData:
    if case_insensitive is None:
        case_insensitive = settings.case_insensitive_match
    skus = db.execute(text("SELECT id, sku AS label FROM skus ORDER BY id")).mappings().all()
    retailers = db.execute(text("SELECT id, name AS label FROM retailers ORDER BY id")).mappings().all()
    return MasterData(
        skus=_lookup(skus, case_insensitive),
        retailers=_lookup(retailers, case_insensitive),
        case_insensitive=case_insensitive,
    )


def add_months(month: date, count: int) -> date:
    index = month.year * 12 + month.month - 1 + count
    return date(index // 12, index % 12 + 1, 1)


def validate_rows(
    db: Session,
    rows: list[ParsedRow],
    *,
    today: date | None = None,
    master: MasterData | None = None,
) -> ValidationOutcome:
    """Resolve SKU/retailer labels to ids and classify every parsed row.

    Valid rows are keyed by ``(sku_id, retailer_id, month)``; a later row for
    a key already present replaces the earlier one, matching the upsert that
    commit performs.
    """
    master = master or load_master_data(db)
    current = today or date.today()
    current_month = date(current.year, current.month, 1)
    future_limit = add_months(current_month, settings.far_future_months)
    past_limit = add_months(current_month, -settings.far_past_months)

    outcome = ValidationOutcome(total_rows=len(rows))
    for row in rows:
        row_errors: list[RowIssue] = []
        row_warnings: list[RowIssue] = []

        sku_id = master.sku_id(row.sku)
        if sku_id is None:
            row_errors.append(
                RowIssue(row, IssueReason.UNKNOWN_SKU, "sku", f'SKU "{row.sku}" not found in master data')
            )

        retailer_id = master.retailer_id(row.retailer)
        if retailer_id is None:
            row_errors.append(
                RowIssue(
                    row,
                    IssueReason.UNKNOWN_RETAILER,
                    "retailer",
                    f'Retailer "{row.retailer}" not found in master data',
                )
            )

        if row.quantity < 0:
            row_errors.append(
                RowIssue(
                    row,
                    IssueReason.INVALID_QUANTITY,
                    "quantity",
                    f"Quantity cannot be negative (got {row.quantity})",
                )
            )
        elif row.quantity == 0:
            row_warnings.append(RowIssue(row, IssueReason.ZERO_QUANTITY, "quantity", "Quantity is zero"))

        if row.month > future_limit:
            row_warnings.append(
                RowIssue(
                    row,
                    IssueReason.FAR_FUTURE_MONTH,
                    "month",
                    f"Month {row.month.isoformat()} is more than {settings.far_future_months} months ahead",
                )
            )
        elif row.month < past_limit:
            row_warnings.append(
                RowIssue(
                    row,
                    IssueReason.FAR_PAST_MONTH,
                    "month",
                    f"Month {row.month.isoformat()} is more than {settings.far_past_months} months in the past",
                )
            )

        if row_errors:
            outcome.errors.extend(row_errors)
            outcome.warnings.extend(row_warnings)
            continue

        resolved = ResolvedRow(row=row, sku_id=sku_id, retailer_id=retailer_id)
        previous = outcome.valid.get(resolved.key)
        if previous is not None:
            row_warnings.append(
                RowIssue(
                    row,
                    IssueReason.DUPLICATE_KEY,
                    "month",
                    f'Duplicate entry for SKU "{row.sku}", retailer "{row.retailer}", month '
                    f"{row.month.isoformat()} (first seen at {previous.row.sheet_name} row "
                    f"{previous.row.row_number}); later row wins",
                )
            )
        outcome.warnings.extend(row_warnings)
        outcome.valid[resolved.key] = resolved

    logger.info(
        "Validated %d rows: %d valid, %d errors, %d warnings",
        outcome.total_rows,
        len(outcome.valid),
        len(outcome.errors),
        len(outcome.warnings),
    )
    return outcome
