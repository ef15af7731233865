from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from warehouse.db import get_session, unit_of_work
from warehouse.deps import require_user
from warehouse.error import CounterpartyNotFound, abort
from warehouse.models import Location, User
from warehouse.schemas import LocationCreate, LocationRead, LocationUpdate

# 出库目的地
router = APIRouter(prefix="/locations", tags=["locations"])


def _get_location(session: Session, location_id: int) -> Location:
    location = session.get(Location, location_id)
    if not location or location.deleted:
        raise CounterpartyNotFound("destination", location_id)
    return location


def _check_name(session: Session, name: str, exclude_id: int | None = None) -> str:
    name = (name or "").strip()
    if not name:
        abort(400, "BAD_REQUEST", "name 不能为空")
    stmt = select(Location.id).where(Location.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Location.id != exclude_id)
    if session.exec(stmt).first() is not None:
        abort(409, "LOCATION_EXISTS", f"目的地已存在：{name}")
    return name


@router.get("", response_model=list[LocationRead])
def list_locations(
        q: str | None = None,
        city: str | None = None,
        include_deleted: bool = False,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    stmt = select(Location)
    if not include_deleted:
        stmt = stmt.where(Location.deleted == False)  # noqa: E712
    if q:
        stmt = stmt.where(Location.name.contains(q))
    if city:
        stmt = stmt.where(Location.city == city)
    return session.exec(stmt.order_by(Location.name)).all()


@router.post("", response_model=LocationRead)
def create_location(
        data: LocationCreate,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    with unit_of_work(session):
        location = Location(
            name=_check_name(session, data.name),
            city=data.city,
            district=data.district,
            address=data.address,
        )
        session.add(location)
    session.refresh(location)
    return location


@router.get("/{location_id}", response_model=LocationRead)
def get_location(
        location_id: int,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return _get_location(session, location_id)


@router.patch("/{location_id}", response_model=LocationRead)
def update_location(
        location_id: int,
        data: LocationUpdate,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    with unit_of_work(session):
        location = _get_location(session, location_id)
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes:
            changes["name"] = _check_name(session, changes["name"], exclude_id=location_id)
        for key, value in changes.items():
            setattr(location, key, value)
        session.add(location)
    session.refresh(location)
    return location


@router.delete("/{location_id}")
def delete_location(
        location_id: int,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    with unit_of_work(session):
        location = _get_location(session, location_id)
        location.deleted = True
        session.add(location)
    return {"ok": True}
