import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy import delete, func, update
from sqlmodel import Session, select

from warehouse.db import unit_of_work, utcnow
from warehouse.error import (
    InsufficientStock,
    ItemNotFound,
    LedgerError,
    MovementNotFound,
    ProductNotFound,
    StockCeilingExceeded,
    WrongMovement,
    abort,
)
from warehouse.models import MAX_STOCK, Movement, MovementItem, Product
from warehouse.services.ledger import (
    MovementPlan,
    MovementType,
    build_movement_plan,
    load_product,
    signed_delta,
    validate_delta,
)
from warehouse.services.quantity import check_quantity

logger = logging.getLogger(__name__)


@dataclass
class MovementResult:
    movement: Movement
    quantities: dict[int, int] = field(default_factory=dict)  # product_id -> 提交后的库存


@dataclass
class ItemResult:
    item: MovementItem
    quantity: Optional[int]  # 商品已 purge 时为 None


@dataclass
class DeletedItem:
    item_id: int
    movement_id: int
    movement_deleted: bool
    product_id: Optional[int]
    quantity: Optional[int]


@dataclass
class PurgeResult:
    product_id: int
    items_deleted: int
    movements_deleted: int


# ---------- 底层：加锁重读 + 原子增量 ----------

def lock_products(session: Session, product_ids: Iterable[int]) -> dict[int, Product]:
    """
    在当前事务里重新读取库存并加行锁。
    按 id 升序加锁，避免两个请求交叉锁同一批商品。
    （SQLite 不支持 FOR UPDATE，由它的库级写锁串行化）
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    stmt = (
        select(Product)
        .where(Product.id.in_(ids))
        .order_by(Product.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {p.id: p for p in session.exec(stmt).all()}


def increment_quantity(session: Session, product_id: int, delta: int, name: Optional[str] = None) -> int:
    # quantity = quantity + :delta 在数据库端计算，不做“读出来改完再写回”
    session.exec(
        update(Product)
        .where(Product.id == product_id)
        .values(quantity=Product.quantity + delta, updated_at=utcnow())
    )
    new_qty = session.exec(select(Product.quantity).where(Product.id == product_id)).one()

    # 提交前再验一次结果
    if new_qty < 0:
        raise InsufficientStock(new_qty - delta, delta, name)
    if new_qty > MAX_STOCK:
        raise StockCeilingExceeded(new_qty - delta, delta, MAX_STOCK, name)
    return new_qty


def _lock_item(session: Session, movement_id: int, item_id: int) -> MovementItem:
    stmt = (
        select(MovementItem)
        .where(MovementItem.id == item_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    item = session.exec(stmt).first()
    if item is None:
        raise ItemNotFound(item_id)
    if item.movement_id != movement_id:
        raise WrongMovement(item_id, movement_id)
    return item


def _count_items(session: Session, movement_id: int) -> int:
    stmt = select(func.count()).select_from(MovementItem).where(MovementItem.movement_id == movement_id)
    return session.exec(stmt).one()


def get_movement(session: Session, movement_id: int) -> Movement:
    mv = session.get(Movement, movement_id)
    if mv is None:
        raise MovementNotFound(movement_id)
    return mv


# ---------- 出入库 ----------

def apply_movement(session: Session, plan: MovementPlan) -> MovementResult:
    """
    在调用方已打开的 unit_of_work 里落库一张出入库单：
    重读库存 → 按净变化量校验 → 写单头 → 写明细 → 原子增量 → 回读校验。
    任何一步失败都抛异常，由 unit_of_work 整体回滚。
    """
    locked = lock_products(session, plan.net_deltas.keys())

    for pid in sorted(plan.net_deltas):
        product = locked.get(pid)
        if product is None:
            raise ProductNotFound(pid)
        check_quantity(product.quantity, plan.net_deltas[pid], product.name)

    mv = Movement(
        type=plan.type.value,
        date=plan.date or utcnow(),
        supplier_id=plan.supplier_id,
        supplier_name=plan.supplier_name,
        destination_id=plan.destination_id,
        destination_name=plan.destination_name,
        worker_id=plan.worker_id,
        worker_name=plan.worker_name,
        author_id=plan.author_id,
        note=plan.note,
    )
    session.add(mv)
    session.flush()  # 生成 mv.id

    for it in plan.items:
        session.add(MovementItem(
            movement_id=mv.id,
            product_id=it.product_id,
            product_name=it.product_name,
            product_sku=it.product_sku,
            delta=it.delta,  # ✅ 永远存“真实变化量”
        ))

    quantities = {}
    for pid in sorted(plan.net_deltas):
        delta = plan.net_deltas[pid]
        if delta == 0:
            quantities[pid] = locked[pid].quantity
            continue
        quantities[pid] = increment_quantity(session, pid, delta, plan.product_names.get(pid))

    session.flush()
    return MovementResult(movement=mv, quantities=quantities)


def create_movement(
    session: Session,
    movement_type,
    items: list[tuple[int, int]],
    **kwargs,
) -> MovementResult:
    """
    一次出入库（单条或批量）。kwargs 透传给 build_movement_plan：
    supplier_id / destination_id / worker_id / note / date / author_id
    """
    try:
        with unit_of_work(session):
            plan = build_movement_plan(session, movement_type, items, **kwargs)
            result = apply_movement(session, plan)
    except LedgerError as e:
        logger.info("movement rejected: %s %s", e.code, e.message)
        raise

    session.refresh(result.movement)
    logger.info(
        "movement %s committed: type=%s items=%d quantities=%s",
        result.movement.id, result.movement.type, len(items), result.quantities,
    )
    return result


def add_movement_item(session: Session, movement_id: int, product_id, delta) -> ItemResult:
    """往已有单据追加一行，符号沿用单据类型。"""
    with unit_of_work(session):
        mv = get_movement(session, movement_id)
        validate_delta(delta)
        load_product(session, product_id)
        d = signed_delta(MovementType(mv.type), delta)

        product = lock_products(session, [product_id])[product_id]
        check_quantity(product.quantity, d, product.name)

        item = MovementItem(
            movement_id=mv.id,
            product_id=product.id,
            product_name=product.name,
            product_sku=product.sku,
            delta=d,
        )
        session.add(item)
        qty = increment_quantity(session, product.id, d, product.name)

    session.refresh(item)
    return ItemResult(item=item, quantity=qty)


def edit_movement_item(session: Session, movement_id: int, item_id: int, new_delta) -> ItemResult:
    """
    修改一行的数量：只对差值 (新 - 旧) 做校验和增量，
    当前库存在事务内重新读取，不用请求发起时的旧值。
    """
    validate_delta(new_delta)
    with unit_of_work(session):
        item = _lock_item(session, movement_id, item_id)
        mv = get_movement(session, movement_id)
        new_signed = signed_delta(MovementType(mv.type), new_delta)
        diff = new_signed - item.delta

        qty = None
        if item.product_id is not None:
            product = lock_products(session, [item.product_id]).get(item.product_id)
            if product is not None:
                qty = product.quantity
                if diff != 0:
                    check_quantity(product.quantity, diff, product.name)
                    qty = increment_quantity(session, product.id, diff, product.name)

        item.delta = new_signed
        session.add(item)

    session.refresh(item)
    logger.info("movement %s item %s delta -> %s (diff %+d)", movement_id, item_id, item.delta, diff)
    return ItemResult(item=item, quantity=qty)


def delete_movement_item(session: Session, movement_id: int, item_id: int) -> DeletedItem:
    """删掉一行并冲回库存；单据没有明细了就连单头一起删。"""
    with unit_of_work(session):
        item = _lock_item(session, movement_id, item_id)
        product_id = item.product_id

        qty = None
        if product_id is not None:
            product = lock_products(session, [product_id]).get(product_id)
            if product is not None:
                qty = product.quantity
                if item.delta != 0:
                    check_quantity(product.quantity, -item.delta, product.name)
                    qty = increment_quantity(session, product_id, -item.delta, product.name)

        session.delete(item)
        session.flush()

        movement_deleted = False
        if _count_items(session, movement_id) == 0:
            session.exec(delete(Movement).where(Movement.id == movement_id))
            movement_deleted = True

    logger.info("movement %s item %s deleted (movement removed: %s)", movement_id, item_id, movement_deleted)
    return DeletedItem(
        item_id=item_id,
        movement_id=movement_id,
        movement_deleted=movement_deleted,
        product_id=product_id,
        quantity=qty,
    )


def update_movement_note(session: Session, movement_id: int, note: Optional[str]) -> Movement:
    # 单头只允许改备注
    with unit_of_work(session):
        mv = get_movement(session, movement_id)
        mv.note = (note or "").strip() or None
        session.add(mv)
    session.refresh(mv)
    return mv


# ---------- 商品 ----------

def create_product(
    session: Session,
    name: str,
    unit: str = "",
    sku: Optional[str] = None,
    quantity: int = 0,
    supplier_id: Optional[int] = None,
    author_id: Optional[int] = None,
) -> Product:
    """
    新建商品。初始数量 > 0 时同时生成一张入库单，
    保证 quantity 始终等于明细之和。
    """
    display_name = (name or "").strip()
    if not display_name:
        abort(400, "BAD_REQUEST", "name 不能为空")
    normalized = display_name.casefold()

    with unit_of_work(session):
        exists = session.exec(select(Product.id).where(Product.name_normalized == normalized)).first()
        if exists is not None:
            abort(409, "PRODUCT_EXISTS", f"商品已存在：{display_name}")

        product = Product(
            name=display_name,
            name_normalized=normalized,
            unit=(unit or "").strip(),
            sku=(sku or "").strip() or None,
            quantity=0,
        )
        session.add(product)
        session.flush()  # 生成 product.id

        if quantity:
            plan = build_movement_plan(
                session, MovementType.IN, [(product.id, quantity)],
                supplier_id=supplier_id, note="新建入库", author_id=author_id,
            )
            apply_movement(session, plan)

    session.refresh(product)
    return product


def purge_product(session: Session, product_id: int) -> PurgeResult:
    """
    彻底删除商品：删掉它的所有明细，再删掉因此变空的单据。
    其它商品的明细和单据不动。
    """
    with unit_of_work(session):
        product = session.get(Product, product_id)
        if product is None:
            raise ProductNotFound(product_id)

        movement_ids = session.exec(
            select(MovementItem.movement_id).where(MovementItem.product_id == product_id).distinct()
        ).all()
        res = session.exec(delete(MovementItem).where(MovementItem.product_id == product_id))
        items_deleted = res.rowcount

        movements_deleted = 0
        for mid in movement_ids:
            if _count_items(session, mid) == 0:
                session.exec(delete(Movement).where(Movement.id == mid))
                movements_deleted += 1

        session.delete(product)

    logger.info(
        "product %s purged: %d items, %d movements", product_id, items_deleted, movements_deleted,
    )
    return PurgeResult(product_id=product_id, items_deleted=items_deleted, movements_deleted=movements_deleted)
