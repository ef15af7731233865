from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import selectinload
from sqlmodel import Session, select

from warehouse.db import get_session
from warehouse.deps import TRANSACT, require_permission, require_user
from warehouse.models import Movement, MovementItem, User
from warehouse.schemas import (
    ItemDeletedRead,
    ItemDeltaUpdate,
    ItemResultRead,
    MovementCreate,
    MovementCreated,
    MovementItemCreate,
    MovementItemRead,
    MovementListResponse,
    MovementNoteUpdate,
    MovementRead,
    MovementSort,
)
from warehouse.services import stock
from warehouse.services.ledger import MovementType
from warehouse.services.reports import in_range
from warehouse.timeutil import parse_range, to_utc_naive

router = APIRouter(prefix="/movements", tags=["movements"])


def _create(session: Session, data: MovementCreate, user: User) -> dict:
    result = stock.create_movement(
        session,
        data.type,
        [(it.product_id, it.delta) for it in data.items],
        supplier_id=data.supplier_id,
        destination_id=data.destination_id,
        worker_id=data.worker_id,
        note=data.note,
        date=to_utc_naive(data.date) if data.date else None,
        author_id=user.id,
    )
    return {"movement": MovementRead.model_validate(result.movement), "quantities": result.quantities}


@router.post("", response_model=MovementCreated)
def create_movement(
        data: MovementCreate,
        session: Session = Depends(get_session),
        user: User = Depends(require_permission(TRANSACT)),
):
    return _create(session, data, user)


@router.post("/bulk", response_model=MovementCreated)
def create_movement_bulk(
        data: MovementCreate,
        session: Session = Depends(get_session),
        user: User = Depends(require_permission(TRANSACT)),
):
    """多行一次提交：同一商品多行先合并成净变化量再校验，任何一行失败整单不落库。"""
    return _create(session, data, user)


@router.get("", response_model=MovementListResponse)
def list_movements(
    type: Optional[MovementType] = Query(None, description="in / out"),
    product_id: Optional[int] = Query(None, ge=1, description="包含该商品的单据"),
    supplier_id: Optional[int] = Query(None, ge=1),
    destination_id: Optional[int] = Query(None, ge=1),
    worker_id: Optional[int] = Query(None, ge=1),
    tz: Optional[str] = Query(None, description="start/end 不带时区时按该时区解释，默认报表时区"),
    start: Optional[str] = Query(None, description="开始时间/日期。例：2026-01-12 或 2026-01-12T08:30:00"),
    end: Optional[str] = Query(None, description="结束时间/日期（左闭右开）"),
    sort: MovementSort = Query(MovementSort.date_desc),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    _user: User = Depends(require_user),
):
    conds = []
    if type is not None:
        conds.append(Movement.type == type.value)
    if product_id is not None:
        conds.append(Movement.id.in_(
            select(MovementItem.movement_id).where(MovementItem.product_id == product_id)
        ))
    if supplier_id is not None:
        conds.append(Movement.supplier_id == supplier_id)
    if destination_id is not None:
        conds.append(Movement.destination_id == destination_id)
    if worker_id is not None:
        conds.append(Movement.worker_id == worker_id)

    start_dt, end_dt = parse_range(start, end, tz)

    stmt = in_range(select(Movement), start_dt, end_dt)
    count_stmt = in_range(select(func.count()).select_from(Movement), start_dt, end_dt)
    if conds:
        stmt = stmt.where(*conds)
        count_stmt = count_stmt.where(*conds)

    order_map = {
        MovementSort.date_desc: (Movement.date.desc(), Movement.id.desc()),
        MovementSort.date_asc: (Movement.date.asc(), Movement.id.asc()),
        MovementSort.id_desc: (Movement.id.desc(),),
        MovementSort.id_asc: (Movement.id.asc(),),
        MovementSort.type_asc: (Movement.type.asc(), Movement.id.desc()),
        MovementSort.type_desc: (Movement.type.desc(), Movement.id.desc()),
    }

    total = session.exec(count_stmt).one()
    rows = session.exec(
        stmt.options(selectinload(Movement.items))
        .order_by(*order_map[sort])
        .offset(offset)
        .limit(limit)
    ).all()

    return {
        "items": [MovementRead.model_validate(mv) for mv in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/{movement_id}", response_model=MovementRead)
def get_movement(
        movement_id: int,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return MovementRead.model_validate(stock.get_movement(session, movement_id))


@router.patch("/{movement_id}", response_model=MovementRead)
def update_movement(
        movement_id: int,
        data: MovementNoteUpdate,
        session: Session = Depends(get_session),
        _user: User = Depends(require_permission(TRANSACT)),
):
    mv = stock.update_movement_note(session, movement_id, data.note)
    return MovementRead.model_validate(mv)


@router.post("/{movement_id}/items", response_model=ItemResultRead)
def add_item(
        movement_id: int,
        data: MovementItemCreate,
        session: Session = Depends(get_session),
        _user: User = Depends(require_permission(TRANSACT)),
):
    result = stock.add_movement_item(session, movement_id, data.product_id, data.delta)
    return {"item": MovementItemRead.model_validate(result.item), "quantity": result.quantity}


@router.patch("/{movement_id}/items/{item_id}", response_model=ItemResultRead)
def edit_item(
        movement_id: int,
        item_id: int,
        data: ItemDeltaUpdate,
        session: Session = Depends(get_session),
        _user: User = Depends(require_permission(TRANSACT)),
):
    result = stock.edit_movement_item(session, movement_id, item_id, data.delta)
    return {"item": MovementItemRead.model_validate(result.item), "quantity": result.quantity}


@router.delete("/{movement_id}/items/{item_id}", response_model=ItemDeletedRead)
def delete_item(
        movement_id: int,
        item_id: int,
        session: Session = Depends(get_session),
        _user: User = Depends(require_permission(TRANSACT)),
):
    result = stock.delete_movement_item(session, movement_id, item_id)
    return {
        "item_id": result.item_id,
        "movement_id": result.movement_id,
        "movement_deleted": result.movement_deleted,
        "product_id": result.product_id,
        "quantity": result.quantity,
    }
