from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from demand_import.config import settings
from demand_import.errors import (
    EmptyFile,
    FileTooLarge,
    InvalidMimeType,
    InvalidSignature,
    NoDataRows,
    NoRowsToImport,
    PersistenceError,
    SecurityValidationFailure,
    Unauthorized,
    UnexpectedImportError,
    WorkbookImportError,
    WrongFormatForEndpoint,
)
from demand_import.format_detection import ExcelFormat, detect_format
from demand_import.parsers import PARSERS, ParsedSalesRow
from demand_import.serialization import (
    deserialize_forecast_row,
    deserialize_sales_row,
    serialize_outcome,
)
from demand_import.validation import CompositeKey, ResolvedRow, validate_rows
from demand_import.workbook import load_workbook_bytes

logger = logging.getLogger(__name__)

XLSX_EXTENSIONS = (".xlsx", ".xlsm")
XLSX_MIME_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel.sheet.macroEnabled.12",
}
ZIP_SIGNATURE = b"PK\x03\x04"
IMPORT_SOURCE = "excel_import"

_SKU_IDS_SQL = text("SELECT id FROM skus WHERE id IN :ids").bindparams(bindparam("ids", expanding=True))
_RETAILER_IDS_SQL = text("SELECT id FROM retailers WHERE id IN :ids").bindparams(
    bindparam("ids", expanding=True)
)


@dataclass(frozen=True)
class ImportKind:
    label: str
    table: str
    accepts: Callable[[ExcelFormat], bool]
    deserialize: Callable[[Mapping[str, Any]], ResolvedRow]
    upsert_sql: str
    wrong_format_message: str
    no_data_message: str


FORECAST_IMPORT = ImportKind(
    label="forecast",
    table="forecasts",
    accepts=lambda fmt: fmt.is_forecast,
    deserialize=deserialize_forecast_row,
    upsert_sql="""
        INSERT INTO forecasts
          (sku_id, retailer_id, month, forecasted_units, source, created_by, created_at, updated_at)
        VALUES
          (:sku_id, :retailer_id, :month, :quantity, :source, :created_by, NOW(), NOW())
        ON CONFLICT (sku_id, retailer_id, month)
        DO UPDATE SET
          forecasted_units = EXCLUDED.forecasted_units,
          source = EXCLUDED.source,
          updated_at = NOW()
    """,
    wrong_format_message="This appears to be a retail sales file. Please use the retail sales import.",
    no_data_message="No forecast data found in file",
)

SALES_IMPORT = ImportKind(
    label="sales",
    table="retail_sales",
    accepts=lambda fmt: fmt.is_sales,
    deserialize=deserialize_sales_row,
    upsert_sql="""
        INSERT INTO retail_sales
          (sku_id, retailer_id, month, units_sold, revenue, source, created_by, created_at, updated_at)
        VALUES
          (:sku_id, :retailer_id, :month, :quantity, :revenue, :source, :created_by, NOW(), NOW())
        ON CONFLICT (sku_id, retailer_id, month)
        DO UPDATE SET
          units_sold = EXCLUDED.units_sold,
          revenue = EXCLUDED.revenue,
          source = EXCLUDED.source,
          updated_at = NOW()
    """,
    wrong_format_message="This appears to be a forecast file. Please use the forecast import.",
    no_data_message="No sales data found in file",
)


def failure(exc: WorkbookImportError) -> dict[str, Any]:
    return {"success": False, "error": exc.message, "error_code": exc.code}


def check_upload(content: bytes, filename: str, content_type: str | None) -> None:
    """Reject oversized, non-spreadsheet or spoofed uploads before any parsing."""
    if len(content) > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes / (1024 * 1024)
        raise FileTooLarge(f"File size exceeds {limit_mb:g}MB limit")
    if not content:
        raise EmptyFile("Uploaded workbook is empty")

    declared = (content_type or "").split(";")[0].strip().lower()
    if not (filename or "").lower().endswith(XLSX_EXTENSIONS) and declared not in XLSX_MIME_TYPES:
        raise InvalidMimeType("File must be .xlsx format")
    if content[:4] != ZIP_SIGNATURE:
        raise InvalidSignature("Invalid .xlsx file signature")


def _preview(
    db: Session,
    kind: ImportKind,
    content: bytes,
    filename: str,
    content_type: str | None,
    today: date | None,
) -> dict[str, Any]:
    try:
        check_upload(content, filename, content_type)
        workbook = load_workbook_bytes(content)
        detected = detect_format(workbook)
        if not kind.accepts(detected):
            raise WrongFormatForEndpoint(kind.wrong_format_message)
        parsed = PARSERS[detected](workbook)
        if not parsed:
            raise NoDataRows(kind.no_data_message)
        outcome = validate_rows(db, parsed, today=today)
    except WorkbookImportError as exc:
        logger.info("Rejected %s preview of %r: %s", kind.label, filename, exc.message)
        return failure(exc)
    except SQLAlchemyError:
        logger.exception("Unexpected database error during %s preview", kind.label)
        return failure(PersistenceError("Unexpected database error while validating rows"))
    except Exception:
        logger.exception("Unexpected error during %s preview of %r", kind.label, filename)
        return failure(UnexpectedImportError("Failed to read workbook: unexpected error"))

    validation = serialize_outcome(outcome)
    logger.info(
        "Previewed %s file %r as %s: %s",
        kind.label,
        filename,
        detected.value,
        validation["summary"],
    )
    return {
        "success": True,
        "format": detected.value,
        "validation": validation,
        "preview_data": validation["valid"][: settings.preview_row_limit],
    }


def preview_forecast_import(
    db: Session,
    content: bytes,
    filename: str,
    content_type: str | None = None,
    *,
    today: date | None = None,
) -> dict[str, Any]:
    return _preview(db, FORECAST_IMPORT, content, filename, content_type, today)


def preview_sales_import(
    db: Session,
    content: bytes,
    filename: str,
    content_type: str | None = None,
    *,
    today: date | None = None,
) -> dict[str, Any]:
    return _preview(db, SALES_IMPORT, content, filename, content_type, today)


def _decode_rows(kind: ImportKind, rows: Sequence[Mapping[str, Any]]) -> list[ResolvedRow]:
    decoded: list[ResolvedRow] = []
    for index, payload in enumerate(rows):
        try:
            resolved = kind.deserialize(payload)
        except (ValueError, TypeError, OverflowError) as exc:
            logger.warning("Dropped %s row %d: %s", kind.label, index, exc)
            continue
        if resolved.row.quantity < 0:
            logger.warning("Dropped %s row %d: negative quantity", kind.label, index)
            continue
        decoded.append(resolved)
    return decoded


def revalidate_references(db: Session, rows: list[ResolvedRow]) -> list[ResolvedRow]:
    """Keep only rows whose SKU and retailer ids exist right now."""
    if not rows:
        return []
    sku_ids = sorted({r.sku_id for r in rows})
    retailer_ids = sorted({r.retailer_id for r in rows})
    known_skus = {int(v) for v in db.execute(_SKU_IDS_SQL, {"ids": sku_ids}).scalars()}
    known_retailers = {int(v) for v in db.execute(_RETAILER_IDS_SQL, {"ids": retailer_ids}).scalars()}
    return [r for r in rows if r.sku_id in known_skus and r.retailer_id in known_retailers]


def _upsert_rows(db: Session, kind: ImportKind, rows: list[ResolvedRow], actor_id: str) -> tuple[int, int]:
    latest: dict[CompositeKey, ResolvedRow] = {}
    for resolved in rows:
        latest[resolved.key] = resolved

    imported = 0
    updated = 0
    for resolved in latest.values():
        params = {
            "sku_id": resolved.sku_id,
            "retailer_id": resolved.retailer_id,
            "month": resolved.row.month,
            "quantity": resolved.row.quantity,
            "revenue": resolved.row.revenue if isinstance(resolved.row, ParsedSalesRow) else None,
            "source": IMPORT_SOURCE,
            "created_by": actor_id,
        }
        exists = db.execute(
            text(
                f"""
                SELECT 1
                FROM {kind.table}
                WHERE sku_id = :sku_id
                  AND retailer_id = :retailer_id
                  AND month = :month
                """
            ),
            params,
        ).scalar()
        db.execute(text(kind.upsert_sql), params)
        if exists:
            updated += 1
        else:
            imported += 1
    return imported, updated


def _commit(db: Session, kind: ImportKind, rows: Sequence[Mapping[str, Any]], actor_id: str | None) -> dict[str, Any]:
    try:
        if not actor_id:
            raise Unauthorized("Unauthorized")
        if not rows:
            raise NoRowsToImport("No rows to import")

        decoded = _decode_rows(kind, rows)
        trusted = revalidate_references(db, decoded)
        dropped = len(rows) - len(trusted)
        if dropped:
            logger.warning(
                "Security validation dropped %d of %d %s rows submitted by %s",
                dropped,
                len(rows),
                kind.label,
                actor_id,
            )
        if not trusted:
            raise SecurityValidationFailure("No valid rows after security validation")

        imported, updated = _upsert_rows(db, kind, trusted, actor_id)
        db.commit()
    except WorkbookImportError as exc:
        db.rollback()
        logger.info("Rejected %s commit: %s", kind.label, exc.message)
        return failure(exc)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Unexpected database error during %s commit", kind.label)
        return failure(PersistenceError("Failed to import data: database error, nothing was saved"))
    except Exception:
        db.rollback()
        logger.exception("Unexpected error during %s commit", kind.label)
        return failure(UnexpectedImportError("Failed to import data: unexpected error, nothing was saved"))

    logger.info(
        "Committed %s import for %s: imported=%d updated=%d dropped=%d",
        kind.label,
        actor_id,
        imported,
        updated,
        dropped,
    )
    return {"success": True, "imported": imported, "updated": updated, "dropped": dropped}


def commit_forecast_import(db: Session, rows: Sequence[Mapping[str, Any]], actor_id: str | None) -> dict[str, Any]:
    return _commit(db, FORECAST_IMPORT, rows, actor_id)


def commit_sales_import(db: Session, rows: Sequence[Mapping[str, Any]], actor_id: str | None) -> dict[str, Any]:
    return _commit(db, SALES_IMPORT, rows, actor_id)
