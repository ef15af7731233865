from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from warehouse.db import get_session, unit_of_work
from warehouse.deps import require_user
from warehouse.error import CounterpartyNotFound, abort
from warehouse.models import Supplier, User
from warehouse.schemas import SupplierCreate, SupplierRead, SupplierUpdate

router = APIRouter(prefix="/suppliers", tags=["suppliers"])


def _get_supplier(session: Session, supplier_id: int) -> Supplier:
    supplier = session.get(Supplier, supplier_id)
    if not supplier or supplier.deleted:
        raise CounterpartyNotFound("supplier", supplier_id)
    return supplier


def _check_name(session: Session, name: str, exclude_id: int | None = None) -> str:
    name = (name or "").strip()
    if not name:
        abort(400, "BAD_REQUEST", "name 不能为空")
    stmt = select(Supplier.id).where(Supplier.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Supplier.id != exclude_id)
    # 已软删的也占着名字（库里 unique）
    if session.exec(stmt).first() is not None:
        abort(409, "SUPPLIER_EXISTS", f"供应商已存在：{name}")
    return name


@router.get("", response_model=list[SupplierRead])
def list_suppliers(
        q: str | None = None,
        include_deleted: bool = False,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    stmt = select(Supplier)
    if not include_deleted:
        stmt = stmt.where(Supplier.deleted == False)  # noqa: E712
    if q:
        stmt = stmt.where(Supplier.name.contains(q))
    return session.exec(stmt.order_by(Supplier.name)).all()


@router.post("", response_model=SupplierRead)
def create_supplier(
        data: SupplierCreate,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    with unit_of_work(session):
        supplier = Supplier(name=_check_name(session, data.name), phone=data.phone, email=data.email)
        session.add(supplier)
    session.refresh(supplier)
    return supplier


@router.get("/{supplier_id}", response_model=SupplierRead)
def get_supplier(
        supplier_id: int,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return _get_supplier(session, supplier_id)


@router.patch("/{supplier_id}", response_model=SupplierRead)
def update_supplier(
        supplier_id: int,
        data: SupplierUpdate,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    with unit_of_work(session):
        supplier = _get_supplier(session, supplier_id)
        if data.name is not None:
            supplier.name = _check_name(session, data.name, exclude_id=supplier_id)
        if data.phone is not None:
            supplier.phone = data.phone
        if data.email is not None:
            supplier.email = data.email
        session.add(supplier)
    session.refresh(supplier)
    return supplier


@router.delete("/{supplier_id}")
def delete_supplier(
        supplier_id: int,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    with unit_of_work(session):
        supplier = _get_supplier(session, supplier_id)
        supplier.deleted = True
        session.add(supplier)
    return {"ok": True}
