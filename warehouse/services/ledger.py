from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from sqlmodel import Session

from warehouse.error import CounterpartyNotFound, InvalidDelta, InvalidMovement, ProductNotFound
from warehouse.models import Location, Product, Supplier, Worker


class MovementType(str, Enum):
    IN = "in"
    OUT = "out"


@dataclass
class PlannedItem:
    product_id: int
    product_name: str
    product_sku: Optional[str]
    delta: int  # 已带符号


@dataclass
class MovementPlan:
    type: MovementType
    items: list[PlannedItem]
    net_deltas: dict[int, int]
    date: Optional[datetime] = None
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    destination_id: Optional[int] = None
    destination_name: Optional[str] = None
    worker_id: Optional[int] = None
    worker_name: Optional[str] = None
    author_id: Optional[int] = None
    note: Optional[str] = None
    product_names: dict[int, str] = field(default_factory=dict)


def _is_positive_int(v) -> bool:
    # bool 是 int 的子类，要排除
    return isinstance(v, int) and not isinstance(v, bool) and v > 0


def parse_movement_type(value) -> MovementType:
    try:
        return MovementType(value)
    except ValueError:
        raise InvalidMovement(f"type 必须是 in/out，收到：{value!r}")


def validate_delta(delta) -> int:
    if not _is_positive_int(delta):
        raise InvalidDelta(delta)
    return delta


def signed_delta(movement_type: MovementType, magnitude: int) -> int:
    # 统一口径：调用方只给正数，符号由类型决定
    magnitude = validate_delta(magnitude)
    return magnitude if movement_type == MovementType.IN else -magnitude


def net_deltas(items: Iterable[tuple[int, int]]) -> dict[int, int]:
    """同一商品出现多次时合并成一个净变化量。"""
    totals: dict[int, int] = {}
    for product_id, delta in items:
        totals[product_id] = totals.get(product_id, 0) + delta
    return totals


def load_product(session: Session, product_id) -> Product:
    if not _is_positive_int(product_id):
        raise ProductNotFound(product_id)
    product = session.get(Product, product_id)
    if product is None or product.deleted:
        raise ProductNotFound(product_id)
    return product


def _resolve_counterparty(session: Session, kind: str, model, entity_id):
    if entity_id is None:
        return None
    if not _is_positive_int(entity_id):
        raise CounterpartyNotFound(kind, entity_id)
    row = session.get(model, entity_id)
    if row is None or row.deleted:
        raise CounterpartyNotFound(kind, entity_id)
    return row


def build_movement_plan(
    session: Session,
    movement_type,
    items: list[tuple[int, int]],
    *,
    supplier_id: Optional[int] = None,
    destination_id: Optional[int] = None,
    worker_id: Optional[int] = None,
    note: Optional[str] = None,
    date: Optional[datetime] = None,
    author_id: Optional[int] = None,
) -> MovementPlan:
    """
    把一次出入库请求整理成可以直接落库的计划：

    - 先校验形状（类型、数量），再查引用，全部在任何写入之前
    - 商品名/编码、供应商/目的地/工人名称此时快照
    - items 按商品合并成 net_deltas，交给 stock.apply_movement 统一校验
    """
    mtype = parse_movement_type(movement_type)
    if not items:
        raise InvalidMovement("items 不能为空")

    for product_id, delta in items:
        if not _is_positive_int(product_id):
            raise ProductNotFound(product_id)
        validate_delta(delta)

    products: dict[int, Product] = {}
    for product_id, _ in items:
        if product_id not in products:
            products[product_id] = load_product(session, product_id)

    supplier = _resolve_counterparty(session, "supplier", Supplier, supplier_id)
    destination = _resolve_counterparty(session, "destination", Location, destination_id)
    worker = _resolve_counterparty(session, "worker", Worker, worker_id)

    planned = []
    for product_id, delta in items:
        p = products[product_id]
        planned.append(PlannedItem(
            product_id=p.id,
            product_name=p.name,
            product_sku=p.sku,
            delta=signed_delta(mtype, delta),
        ))

    note_clean = (note or "").strip() or None

    return MovementPlan(
        type=mtype,
        items=planned,
        net_deltas=net_deltas((it.product_id, it.delta) for it in planned),
        date=date,
        supplier_id=supplier.id if supplier else None,
        supplier_name=supplier.name if supplier else None,
        destination_id=destination.id if destination else None,
        destination_name=destination.name if destination else None,
        worker_id=worker.id if worker else None,
        worker_name=worker.full_name if worker else None,
        author_id=author_id,
        note=note_clean,
        product_names={pid: p.name for pid, p in products.items()},
    )

