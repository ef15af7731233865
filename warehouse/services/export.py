import csv
import io
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import quote

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from sqlalchemy.orm import selectinload
from sqlmodel import Session, select

from warehouse.error import abort
from warehouse.models import Movement
from warehouse.services import reports

Columns = list[tuple[str, str]]  # (key, 表头)


def _movement_rows(session: Session, start=None, end=None, **_):
    stmt = (
        reports.in_range(select(Movement), start, end)
        .options(selectinload(Movement.items))
        .order_by(Movement.date.desc(), Movement.id.desc())
    )
    rows = []
    for mv in session.exec(stmt).all():
        per_product: dict[str, int] = {}
        total = 0
        for it in mv.items:
            qty = abs(it.delta)
            total += qty
            per_product[it.product_name] = per_product.get(it.product_name, 0) + qty
        rows.append({
            "id": mv.id,
            "date": mv.date,
            "products": ", ".join(f"{n}({q})" for n, q in per_product.items()),
            "quantity": total,
            "type": mv.type,
            "supplier": mv.supplier_name or "",
            "destination": mv.destination_name or "",
            "worker": mv.worker_name or "",
            "note": mv.note or "",
        })
    return rows


def _forecast_rows(session: Session, days=None, **_):
    rows = reports.consumption_forecast(session, days)
    for r in rows:
        r["avg_daily_consumption"] = round(r["avg_daily_consumption"], 2)
        r["days_to_stockout"] = int(r["days_to_stockout"])
    return rows


# type -> (取数函数, 列, 文件名前缀)
EXPORTS: dict[str, tuple[Callable, Columns, str]] = {
    "inventory": (
        lambda s, **_: reports.inventory_status(s),
        [("name", "商品"), ("unit", "单位"), ("current_stock", "库存"),
         ("monthly_inflow", "本月入库"), ("monthly_outflow", "本月出库"), ("turnover_rate", "周转率")],
        "库存现状",
    ),
    "top-products": (
        lambda s, start=None, end=None, limit=None, **_: reports.top_products(s, start, end, limit or 100),
        [("name", "商品"), ("total", "出库量")],
        "出库排行",
    ),
    "low-stock": (
        lambda s, threshold=None, **_: [p.model_dump() for p in reports.low_stock(s, threshold)],
        [("id", "ID"), ("name", "商品"), ("quantity", "库存")],
        "低库存",
    ),
    "worker-performance": (
        lambda s, start=None, end=None, **_: reports.worker_performance(s, start, end),
        [("worker_name", "工人"), ("transaction_count", "出库行数"), ("total_quantity", "出库数量")],
        "工人统计",
    ),
    "consumption-forecast": (
        _forecast_rows,
        [("product_name", "商品"), ("current_stock", "库存"),
         ("avg_daily_consumption", "日均消耗"), ("days_to_stockout", "预计用完天数")],
        "消耗预测",
    ),
    "destination-stats": (
        lambda s, start=None, end=None, **_: reports.destination_stats(s, start, end),
        [("destination_name", "目的地"), ("transaction_count", "出库行数"), ("total_quantity", "出库数量")],
        "目的地统计",
    ),
    "supplier-stats": (
        lambda s, start=None, end=None, **_: reports.supplier_stats(s, start, end),
        [("supplier_name", "供应商"), ("transaction_count", "入库行数"), ("total_quantity", "入库数量")],
        "供应商统计",
    ),
    "transactions": (
        _movement_rows,
        [("id", "ID"), ("date", "日期"), ("products", "商品"), ("quantity", "数量"), ("type", "类型"),
         ("supplier", "供应商"), ("destination", "目的地"), ("worker", "工人"), ("note", "备注")],
        "出入库流水",
    ),
}


def collect(session: Session, export_type: str, **params) -> tuple[list[dict], Columns, str]:
    if export_type not in EXPORTS:
        abort(400, "BAD_REQUEST", f"type 不支持：{export_type}（可选：{'/'.join(EXPORTS)}）")
    fetch, columns, prefix = EXPORTS[export_type]
    return fetch(session, **params), columns, prefix


def _cell(v):
    if v is None:
        return ""
    if isinstance(v, datetime):
        return v.strftime("%Y-%m-%d %H:%M:%S")
    return v


def to_csv(rows: list[dict], columns: Columns) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([title for _, title in columns])
    for r in rows:
        writer.writerow([_cell(r.get(k)) for k, _ in columns])
    # 带 BOM，Excel 直接打开不乱码
    return ("\ufeff" + buf.getvalue()).encode("utf-8")


def to_xlsx(rows: list[dict], columns: Columns, sheet_title: str) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title[:31]

    header_font = Font(bold=True)
    header_fill = PatternFill("solid", fgColor="F3F4F6")
    header_align = Alignment(horizontal="left", vertical="center")
    thin = Side(style="thin")

    ws.append([title for _, title in columns])
    for col in range(1, len(columns) + 1):
        cell = ws.cell(row=1, column=col)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_align
        cell.border = Border(top=thin, left=thin, bottom=thin, right=thin)

    for r in rows:
        ws.append([_cell(r.get(k)) for k, _ in columns])

    # ✅ 冻结首行
    ws.freeze_panes = "A2"

    # 列宽按内容估，10~80
    for col_cells in ws.iter_cols(min_row=1, max_row=ws.max_row):
        width = max([10] + [min(80, len(str(c.value))) for c in col_cells if c.value is not None])
        ws.column_dimensions[col_cells[0].column_letter].width = width + 2

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def content_disposition(filename: str, fallback: Optional[str] = None) -> str:
    quoted = quote(filename)
    fallback = fallback or "report" + filename[filename.rfind("."):]
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quoted}"
