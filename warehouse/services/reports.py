"""
只读报表：全部基于出入库明细 (MovementItem) 聚合，不改任何数据。

时间参数都是 UTC-naive；按天切分用 settings.report_timezone。
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from warehouse.config import settings
from warehouse.db import utcnow
from warehouse.models import Location, Movement, MovementItem, Product, Supplier, Worker
from warehouse.timeutil import get_zone, local_date, local_day_start, local_month_range

STOCKOUT_HORIZON_DAYS = 30


def in_range(stmt, start: Optional[datetime], end: Optional[datetime]):
    if start is not None:
        stmt = stmt.where(Movement.date >= start)
    if end is not None:
        stmt = stmt.where(Movement.date < end)
    return stmt


def _item_sums(session: Session, movement_type: str, start=None, end=None) -> dict[int, int]:
    stmt = (
        select(MovementItem.product_id, func.sum(MovementItem.delta))
        .join(Movement, MovementItem.movement_id == Movement.id)
        .where(Movement.type == movement_type, MovementItem.product_id.is_not(None))
        .group_by(MovementItem.product_id)
    )
    stmt = in_range(stmt, start, end)
    return {pid: abs(total or 0) for pid, total in session.exec(stmt).all()}


def inventory_status(session: Session, now: Optional[datetime] = None) -> list[dict]:
    """库存现状 + 本月进出 + 周转率 + 最后一次变动时间。"""
    now = now or utcnow()
    month_start, month_end = local_month_range(now, get_zone(None))

    products = session.exec(
        select(Product).where(Product.deleted == False).order_by(Product.name)  # noqa: E712
    ).all()
    flow_in = _item_sums(session, "in", month_start, month_end)
    flow_out = _item_sums(session, "out", month_start, month_end)

    last_moves = dict(session.exec(
        select(MovementItem.product_id, func.max(Movement.date))
        .join(Movement, MovementItem.movement_id == Movement.id)
        .where(MovementItem.product_id.is_not(None))
        .group_by(MovementItem.product_id)
    ).all())

    rows = []
    for p in products:
        inflow = flow_in.get(p.id, 0)
        outflow = flow_out.get(p.id, 0)
        if p.quantity > 0:
            turnover = outflow / (p.quantity + outflow)
        else:
            turnover = 1.0 if outflow > 0 else 0.0
        rows.append({
            "id": p.id,
            "name": p.name,
            "unit": p.unit,
            "current_stock": p.quantity,
            "monthly_inflow": inflow,
            "monthly_outflow": outflow,
            "turnover_rate": turnover,
            "last_movement": last_moves.get(p.id),
        })
    return rows


def transaction_summary(session: Session, start=None, end=None) -> dict:
    """按明细行计数：总数、入库、出库，以及按当地日期的每日汇总。"""
    zone = get_zone(None)
    stmt = select(Movement.date, Movement.type).join(MovementItem, MovementItem.movement_id == Movement.id)
    rows = session.exec(in_range(stmt, start, end)).all()

    daily: dict[str, dict] = {}
    incoming = outgoing = 0
    for dt, mtype in rows:
        day = local_date(dt, zone).isoformat()
        bucket = daily.setdefault(day, {"date": day, "in": 0, "out": 0, "total": 0})
        if mtype == "in":
            incoming += 1
            bucket["in"] += 1
        elif mtype == "out":
            outgoing += 1
            bucket["out"] += 1
        bucket["total"] += 1

    return {
        "total": len(rows),
        "incoming": incoming,
        "outgoing": outgoing,
        "daily": [daily[k] for k in sorted(daily)],
    }


def top_products(session: Session, start=None, end=None, limit: int = 20) -> list[dict]:
    consumed = -func.sum(MovementItem.delta)
    stmt = (
        select(MovementItem.product_id, func.max(MovementItem.product_name), consumed)
        .join(Movement, MovementItem.movement_id == Movement.id)
        .where(Movement.type == "out", MovementItem.product_id.is_not(None))
        .group_by(MovementItem.product_id)
        .order_by(consumed.desc(), MovementItem.product_id)
        .limit(limit)
    )
    stmt = in_range(stmt, start, end)
    return [{"id": pid, "name": name, "total": int(total or 0)} for pid, name, total in session.exec(stmt).all()]


def low_stock(session: Session, threshold: Optional[int] = None) -> list[Product]:
    threshold = settings.low_stock_threshold if threshold is None else threshold
    stmt = (
        select(Product)
        .where(Product.deleted == False, Product.quantity <= threshold)  # noqa: E712
        .order_by(Product.quantity.asc(), Product.id)
    )
    return list(session.exec(stmt).all())


def _counterparty_stats(session: Session, movement_type: str, id_col, name_col, start=None, end=None):
    # [(id, 快照名, 明细数, 数量)]
    stmt = (
        select(id_col, func.max(name_col), func.count(MovementItem.id), func.sum(MovementItem.delta))
        .join(MovementItem, MovementItem.movement_id == Movement.id)
        .where(Movement.type == movement_type, id_col.is_not(None))
        .group_by(id_col)
    )
    return session.exec(in_range(stmt, start, end)).all()


def _by_id(session: Session, model, ids) -> dict:
    ids = list(ids)
    if not ids:
        return {}
    return {row.id: row for row in session.exec(select(model).where(model.id.in_(ids))).all()}


def _display_name(live, snapshot: Optional[str], entity_id: int, attr: str = "name") -> str:
    if live is not None:
        return getattr(live, attr)
    return snapshot or f"已删除 #{entity_id}"


def worker_performance(session: Session, start=None, end=None) -> list[dict]:
    """每个工人的出库明细数和出库数量；没有记录的在职工人也列出来（0）。"""
    rows = _counterparty_stats(session, "out", Movement.worker_id, Movement.worker_name, start, end)
    workers = _by_id(session, Worker, (r[0] for r in rows))
    results = []
    seen = set()
    for wid, snapshot, count, total in rows:
        worker = workers.get(wid)
        results.append({
            "worker_id": wid,
            "worker_name": _display_name(worker, snapshot, wid, "full_name"),
            "transaction_count": count,
            "total_quantity": abs(total or 0),
        })
        seen.add(wid)

    for w in session.exec(select(Worker).where(Worker.deleted == False)).all():  # noqa: E712
        if w.id not in seen:
            results.append({"worker_id": w.id, "worker_name": w.full_name, "transaction_count": 0, "total_quantity": 0})

    return sorted(results, key=lambda r: (-r["total_quantity"], r["worker_id"]))


def destination_stats(session: Session, start=None, end=None) -> list[dict]:
    rows = _counterparty_stats(session, "out", Movement.destination_id, Movement.destination_name, start, end)
    locations = _by_id(session, Location, (r[0] for r in rows))
    results = []
    for did, snapshot, count, total in rows:
        results.append({
            "destination_id": did,
            "destination_name": _display_name(locations.get(did), snapshot, did),
            "transaction_count": count,
            "total_quantity": abs(total or 0),
        })
    return sorted(results, key=lambda r: (-r["total_quantity"], r["destination_id"]))


def supplier_stats(session: Session, start=None, end=None) -> list[dict]:
    rows = _counterparty_stats(session, "in", Movement.supplier_id, Movement.supplier_name, start, end)
    suppliers = _by_id(session, Supplier, (r[0] for r in rows))
    results = []
    for sid, snapshot, count, total in rows:
        results.append({
            "supplier_id": sid,
            "supplier_name": _display_name(suppliers.get(sid), snapshot, sid),
            "transaction_count": count,
            "total_quantity": abs(total or 0),
        })
    return sorted(results, key=lambda r: (-r["total_quantity"], r["supplier_id"]))


def consumption_forecast(session: Session, days: Optional[int] = None, now: Optional[datetime] = None) -> list[dict]:
    """
    按最近 days 天的日均出库量估算几天后用完。
    只返回 STOCKOUT_HORIZON_DAYS 天内会用完的商品，最紧急的在前。
    """
    days = days or settings.forecast_days
    now = now or utcnow()
    consumed = _item_sums(session, "out", now - timedelta(days=days), None)

    products = session.exec(
        select(Product).where(Product.deleted == False, Product.quantity > 0)  # noqa: E712
    ).all()

    forecast = []
    for p in products:
        avg = consumed.get(p.id, 0) / days
        if avg <= 0:
            continue
        days_left = p.quantity / avg
        if days_left <= STOCKOUT_HORIZON_DAYS:
            forecast.append({
                "product_id": p.id,
                "product_name": p.name,
                "current_stock": p.quantity,
                "avg_daily_consumption": avg,
                "days_to_stockout": days_left,
            })
    return sorted(forecast, key=lambda r: r["days_to_stockout"])


def dashboard_stats(session: Session, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    today = local_day_start(now, get_zone(None))
    total_products = session.exec(
        select(func.count()).select_from(Product).where(Product.deleted == False)  # noqa: E712
    ).one()
    today_movements = session.exec(
        select(func.count()).select_from(Movement).where(Movement.date >= today)
    ).one()
    last_activity = session.exec(select(func.max(Movement.date))).one()
    return {
        "total_products": total_products,
        "today_movements": today_movements,
        "last_activity": last_activity,
    }
