import logging
from datetime import date

from fastapi import Depends, FastAPI, File, Header, Query, Request, UploadFile
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from demand_import.config import settings
from demand_import import models
from demand_import.database import SessionLocal, engine
from demand_import.errors import InvalidRequest, status_for
from demand_import.import_service import (
    commit_forecast_import,
    commit_sales_import,
    failure,
    preview_forecast_import,
    preview_sales_import,
)
from demand_import.schemas import CommitRequest

logging.basicConfig(level=settings.log_level)

app = FastAPI(title="Demand Import")


@app.on_event("startup")
def ensure_import_tables():
    models.Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor_id(x_actor_id: str | None = Header(default=None)) -> str | None:
    if x_actor_id is None:
        return None
    return x_actor_id.strip() or None


def import_response(result: dict):
    if result.get("success"):
        return result
    return JSONResponse(status_code=status_for(result.get("error_code", "")), content=result)


@app.exception_handler(RequestValidationError)
async def import_validation_error(request: Request, exc: RequestValidationError):
    if not request.url.path.startswith("/import/"):
        return await request_validation_exception_handler(request, exc)
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return import_response(failure(InvalidRequest(f"Invalid import request: {problems}")))


async def read_upload(upload: UploadFile) -> bytes:
    # One byte past the cap is enough to reject oversized uploads.
    return await upload.read(settings.max_upload_bytes + 1)


def build_filters(
    alias: str,
    retailer_id: int | None,
    brand_id: int | None,
    month_start: date | None,
    month_end: date | None,
) -> tuple[str, dict]:
    clauses = []
    params: dict = {}
    if retailer_id is not None:
        clauses.append(f"{alias}.retailer_id = :retailer_id")
        params["retailer_id"] = retailer_id
    if brand_id is not None:
        clauses.append("s.brand_id = :brand_id")
        params["brand_id"] = brand_id
    if month_start is not None:
        clauses.append(f"{alias}.month >= :month_start")
        params["month_start"] = month_start
    if month_end is not None:
        clauses.append(f"{alias}.month <= :month_end")
        params["month_end"] = month_end
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


@app.get("/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"ok": True}


@app.post("/import/forecasts/preview")
async def preview_forecasts(
    workbook_file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    payload = await read_upload(workbook_file)
    result = preview_forecast_import(
        db,
        content=payload,
        filename=workbook_file.filename or "",
        content_type=workbook_file.content_type,
    )
    db.rollback()
    return import_response(result)


@app.post("/import/forecasts/commit")
def commit_forecasts(
    payload: CommitRequest,
    actor_id: str | None = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    result = commit_forecast_import(db, payload.rows, actor_id)
    return import_response(result)


@app.post("/import/sales/preview")
async def preview_sales(
    workbook_file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    payload = await read_upload(workbook_file)
    result = preview_sales_import(
        db,
        content=payload,
        filename=workbook_file.filename or "",
        content_type=workbook_file.content_type,
    )
    db.rollback()
    return import_response(result)


@app.post("/import/sales/commit")
def commit_sales(
    payload: CommitRequest,
    actor_id: str | None = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    result = commit_sales_import(db, payload.rows, actor_id)
    return import_response(result)


@app.get("/api/forecasts")
def list_forecasts(
    retailer_id: int | None = Query(None),
    brand_id: int | None = Query(None),
    month_start: date | None = Query(None),
    month_end: date | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    where, params = build_filters("f", retailer_id, brand_id, month_start, month_end)
    rows = db.execute(
        text(
            f"""
            SELECT f.id, f.month, f.forecasted_units, f.ordered_units, f.source, f.notes, f.created_by,
                   f.created_at, f.updated_at,
                   s.id AS sku_id, s.sku, s.name AS sku_name, s.brand_id,
                   r.id AS retailer_id, r.name AS retailer
            FROM forecasts f
            JOIN skus s ON s.id = f.sku_id
            JOIN retailers r ON r.id = f.retailer_id
            {where}
            ORDER BY f.month DESC, s.sku, r.name
            LIMIT :limit OFFSET :offset
            """
        ),
        {**params, "limit": limit, "offset": offset},
    ).mappings().all()
    return {"items": [dict(r) for r in rows]}


@app.get("/api/forecasts/count")
def count_forecasts(
    retailer_id: int | None = Query(None),
    brand_id: int | None = Query(None),
    month_start: date | None = Query(None),
    month_end: date | None = Query(None),
    db: Session = Depends(get_db),
):
    where, params = build_filters("f", retailer_id, brand_id, month_start, month_end)
    count = db.execute(
        text(f"SELECT COUNT(*) FROM forecasts f JOIN skus s ON s.id = f.sku_id {where}"),
        params,
    ).scalar_one()
    return {"count": count}


@app.get("/api/forecasts/by-brand")
def forecasts_by_brand(
    brand_id: int = Query(...),
    month_start: date | None = Query(None),
    month_end: date | None = Query(None),
    db: Session = Depends(get_db),
):
    where, params = build_filters("f", None, brand_id, month_start, month_end)
    rows = db.execute(
        text(
            f"""
            SELECT f.month,
                   SUM(f.forecasted_units) AS total_forecasted_units,
                   COALESCE(SUM(f.ordered_units), 0) AS total_ordered_units
            FROM forecasts f
            JOIN skus s ON s.id = f.sku_id
            {where}
            GROUP BY f.month
            ORDER BY f.month DESC
            """
        ),
        params,
    ).mappings().all()
    return {"items": [dict(r) for r in rows]}


@app.get("/api/sales")
def list_sales(
    retailer_id: int | None = Query(None),
    brand_id: int | None = Query(None),
    month_start: date | None = Query(None),
    month_end: date | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    where, params = build_filters("rs", retailer_id, brand_id, month_start, month_end)
    rows = db.execute(
        text(
            f"""
            SELECT rs.id, rs.month, rs.units_sold, rs.revenue, rs.source, rs.created_by,
                   rs.created_at, rs.updated_at,
                   s.id AS sku_id, s.sku, s.name AS sku_name, s.brand_id,
                   r.id AS retailer_id, r.name AS retailer
            FROM retail_sales rs
            JOIN skus s ON s.id = rs.sku_id
            JOIN retailers r ON r.id = rs.retailer_id
            {where}
            ORDER BY rs.month DESC, s.sku, r.name
            LIMIT :limit OFFSET :offset
            """
        ),
        {**params, "limit": limit, "offset": offset},
    ).mappings().all()
    return {"items": [dict(r) for r in rows]}


@app.get("/api/sales/count")
def count_sales(
    retailer_id: int | None = Query(None),
    brand_id: int | None = Query(None),
    month_start: date | None = Query(None),
    month_end: date | None = Query(None),
    db: Session = Depends(get_db),
):
    where, params = build_filters("rs", retailer_id, brand_id, month_start, month_end)
    count = db.execute(
        text(f"SELECT COUNT(*) FROM retail_sales rs JOIN skus s ON s.id = rs.sku_id {where}"),
        params,
    ).scalar_one()
    return {"count": count}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("demand_import.main:app", host=settings.app_host, port=settings.app_port)
