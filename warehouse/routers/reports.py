from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlmodel import Session

from warehouse.db import get_session
from warehouse.deps import require_user
from warehouse.models import User
from warehouse.schemas import (
    DashboardStats,
    DestinationStatsRow,
    ForecastRow,
    InventoryStatusRow,
    ProductRead,
    SupplierStatsRow,
    TopProductRow,
    TransactionSummary,
    WorkerPerformanceRow,
)
from warehouse.services import export, reports
from warehouse.timeutil import parse_range

router = APIRouter(prefix="/reports", tags=["reports"])
stats_router = APIRouter(tags=["reports"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_TZ = Query(None, description="start/end 按该时区解释，默认报表时区")
_START = Query(None, description="开始日期/时间。例：2026-01-01")
_END = Query(None, description="结束日期/时间（含当天）。例：2026-01-31")


@router.get("/inventory", response_model=list[InventoryStatusRow])
def inventory_status(
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return reports.inventory_status(session)


@router.get("/transactions", response_model=TransactionSummary)
def transaction_summary(
        start: Optional[str] = _START,
        end: Optional[str] = _END,
        tz: Optional[str] = _TZ,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return reports.transaction_summary(session, *parse_range(start, end, tz))


@router.get("/top-products", response_model=list[TopProductRow])
def top_products(
        start: Optional[str] = _START,
        end: Optional[str] = _END,
        tz: Optional[str] = _TZ,
        limit: int = Query(20, ge=1, le=200),
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    start_dt, end_dt = parse_range(start, end, tz)
    return reports.top_products(session, start_dt, end_dt, limit)


@router.get("/low-stock", response_model=list[ProductRead])
def low_stock(
        threshold: Optional[int] = Query(None, ge=0, description="默认取配置 low_stock_threshold"),
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return reports.low_stock(session, threshold)


@router.get("/worker-performance", response_model=list[WorkerPerformanceRow])
def worker_performance(
        start: Optional[str] = _START,
        end: Optional[str] = _END,
        tz: Optional[str] = _TZ,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return reports.worker_performance(session, *parse_range(start, end, tz))


@router.get("/destination-stats", response_model=list[DestinationStatsRow])
def destination_stats(
        start: Optional[str] = _START,
        end: Optional[str] = _END,
        tz: Optional[str] = _TZ,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return reports.destination_stats(session, *parse_range(start, end, tz))


@router.get("/supplier-stats", response_model=list[SupplierStatsRow])
def supplier_stats(
        start: Optional[str] = _START,
        end: Optional[str] = _END,
        tz: Optional[str] = _TZ,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return reports.supplier_stats(session, *parse_range(start, end, tz))


@router.get("/consumption-forecast", response_model=list[ForecastRow])
def consumption_forecast(
        days: Optional[int] = Query(None, ge=1, le=365, description="统计最近多少天，默认取配置 forecast_days"),
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return reports.consumption_forecast(session, days)


@router.get("/export")
def export_report(
        type: str = Query(..., description="/".join(export.EXPORTS)),
        format: Literal["csv", "xlsx"] = Query("xlsx"),
        start: Optional[str] = _START,
        end: Optional[str] = _END,
        tz: Optional[str] = _TZ,
        limit: Optional[int] = Query(None, ge=1, le=1000),
        threshold: Optional[int] = Query(None, ge=0),
        days: Optional[int] = Query(None, ge=1, le=365),
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    start_dt, end_dt = parse_range(start, end, tz)
    rows, columns, prefix = export.collect(
        session, type, start=start_dt, end=end_dt, limit=limit, threshold=threshold, days=days,
    )

    stamp = datetime.now().strftime("%Y-%m-%d")
    if format == "csv":
        content = export.to_csv(rows, columns)
        media_type = "text/csv; charset=utf-8"
    else:
        content = export.to_xlsx(rows, columns, prefix)
        media_type = XLSX_MEDIA_TYPE

    headers = {
        "Content-Disposition": export.content_disposition(
            f"{prefix}_{stamp}.{format}", fallback=f"{type}_{stamp}.{format}",
        )
    }
    return Response(content=content, media_type=media_type, headers=headers)


@stats_router.get("/stats", response_model=DashboardStats)
def dashboard_stats(
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return reports.dashboard_stats(session)
