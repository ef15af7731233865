from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_
from sqlmodel import Session, select

from warehouse.db import get_session, unit_of_work, utcnow
from warehouse.deps import TRANSACT, has_permission, require_permission, require_user
from warehouse.error import ProductNotFound, _forbidden_403, abort
from warehouse.models import Product, User
from warehouse.schemas import (
    MovementCreated,
    MovementRead,
    ProductAdjust,
    ProductCreate,
    ProductDeleted,
    ProductListResponse,
    ProductRead,
    ProductUpdate,
)
from warehouse.services import stock
from warehouse.timeutil import to_utc_naive

router = APIRouter(prefix="/products", tags=["products"])


def _get_product(session: Session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if not product:
        raise ProductNotFound(product_id)
    return product


@router.post("", response_model=ProductRead)
def create_product(
        data: ProductCreate,
        session: Session = Depends(get_session),
        user: User = Depends(require_user),
):
    # 带初始库存 = 一次入库，需要出入库权限
    if data.quantity > 0 and not has_permission(user, TRANSACT):
        raise _forbidden_403(f"缺少权限：{TRANSACT}")

    return stock.create_product(
        session,
        data.name,
        unit=data.unit,
        sku=data.sku,
        quantity=data.quantity,
        supplier_id=data.supplier_id,
        author_id=user.id,
    )


@router.get("", response_model=ProductListResponse)
def list_products(
        q: str | None = None,
        include_deleted: bool = False,
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
        sort: str = Query(
            "name_asc",
            description="排序：id_desc/id_asc/name_asc/name_desc/qty_asc/qty_desc",
        ),
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    conds = []
    if not include_deleted:
        conds.append(Product.deleted == False)  # noqa: E712
    if q:
        conds.append(or_(Product.name.contains(q), Product.sku.contains(q)))

    count_stmt = select(func.count()).select_from(Product)
    if conds:
        count_stmt = count_stmt.where(*conds)
    total = session.exec(count_stmt).one()

    order_map = {
        "id_desc": Product.id.desc(),
        "id_asc": Product.id.asc(),
        "name_asc": Product.name_normalized.asc(),
        "name_desc": Product.name_normalized.desc(),
        "qty_asc": Product.quantity.asc(),
        "qty_desc": Product.quantity.desc(),
    }
    if sort not in order_map:
        abort(400, "BAD_REQUEST", f"sort 不支持：{sort}")

    items_stmt = select(Product)
    if conds:
        items_stmt = items_stmt.where(*conds)
    items = session.exec(
        items_stmt.order_by(order_map[sort], Product.id).offset(offset).limit(limit)
    ).all()

    return {"items": items, "total": total, "limit": limit, "offset": offset, "q": q}


@router.get("/{product_id}", response_model=ProductRead)
def get_product(
        product_id: int,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return _get_product(session, product_id)


@router.patch("/{product_id}", response_model=ProductRead)
def update_product(
        product_id: int,
        data: ProductUpdate,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    # 数量不能在这里改，只能走出入库
    with unit_of_work(session):
        product = _get_product(session, product_id)
        if product.deleted:
            raise ProductNotFound(product_id)

        if data.name is not None:
            name = data.name.strip()
            if not name:
                abort(400, "BAD_REQUEST", "name 不能为空")
            normalized = name.casefold()
            clash = session.exec(
                select(Product.id).where(Product.name_normalized == normalized, Product.id != product_id)
            ).first()
            if clash is not None:
                abort(409, "PRODUCT_EXISTS", f"商品已存在：{name}")
            product.name = name
            product.name_normalized = normalized
        if data.unit is not None:
            product.unit = data.unit.strip()
        if data.sku is not None:
            product.sku = data.sku.strip() or None

        product.updated_at = utcnow()
        session.add(product)

    session.refresh(product)
    return product


@router.delete("/{product_id}", response_model=ProductDeleted)
def delete_product(
        product_id: int,
        purge: bool = Query(False, description="true = 彻底删除（连同明细），仅管理员"),
        session: Session = Depends(get_session),
        user: User = Depends(require_user),
):
    if purge:
        if user.role != "admin":
            raise _forbidden_403("彻底删除仅管理员可操作")
        result = stock.purge_product(session, product_id)
        return {
            "purged": True,
            "items_deleted": result.items_deleted,
            "movements_deleted": result.movements_deleted,
        }

    with unit_of_work(session):
        product = _get_product(session, product_id)
        product.deleted = True
        product.updated_at = utcnow()
        session.add(product)
    return {"purged": False}


@router.post("/{product_id}/adjust", response_model=MovementCreated)
def adjust_product(
        product_id: int,
        data: ProductAdjust,
        session: Session = Depends(get_session),
        user: User = Depends(require_permission(TRANSACT)),
):
    """单个商品的一次入库/出库，等价于只有一行明细的出入库单。"""
    result = stock.create_movement(
        session,
        data.type,
        [(product_id, data.delta)],
        supplier_id=data.supplier_id,
        destination_id=data.destination_id,
        worker_id=data.worker_id,
        note=data.note,
        date=to_utc_naive(data.date) if data.date else None,
        author_id=user.id,
    )
    return {"movement": MovementRead.model_validate(result.movement), "quantities": result.quantities}
