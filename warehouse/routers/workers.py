from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from warehouse.db import get_session, unit_of_work
from warehouse.deps import require_admin, require_user
from warehouse.error import WorkerNotFound, abort
from warehouse.models import User, Worker
from warehouse.schemas import WorkerCreate, WorkerRead, WorkerUpdate, WorkerWithTools
from warehouse.services import tool_ledger

router = APIRouter(prefix="/workers", tags=["workers"])


def _get_worker(session: Session, worker_id: int, *, include_deleted: bool = False) -> Worker:
    worker = session.get(Worker, worker_id)
    if not worker or (worker.deleted and not include_deleted):
        raise WorkerNotFound(worker_id)
    return worker


@router.get("", response_model=list[WorkerRead])
def list_workers(
        q: str | None = None,
        include_deleted: bool = False,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    stmt = select(Worker)
    if not include_deleted:
        stmt = stmt.where(Worker.deleted == False)  # noqa: E712
    if q:
        stmt = stmt.where(Worker.full_name.contains(q))
    return session.exec(stmt.order_by(Worker.full_name, Worker.id)).all()


@router.post("", response_model=WorkerRead)
def create_worker(
        data: WorkerCreate,
        session: Session = Depends(get_session),
        _admin: User = Depends(require_admin),
):
    with unit_of_work(session):
        worker = Worker(
            full_name=data.full_name.strip(),
            phone=data.phone,
            position=data.position,
        )
        session.add(worker)
    session.refresh(worker)
    return worker


@router.get("/{worker_id}", response_model=WorkerWithTools)
def get_worker(
        worker_id: int,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    # 连同手里还没还的工具
    worker = _get_worker(session, worker_id, include_deleted=True)
    data = WorkerRead.model_validate(worker).model_dump()
    data["assignments"] = tool_ledger.outstanding_assignments(session, worker_id=worker_id)
    return data


@router.patch("/{worker_id}", response_model=WorkerRead)
def update_worker(
        worker_id: int,
        data: WorkerUpdate,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    # 改名不影响历史单据上的快照
    with unit_of_work(session):
        worker = _get_worker(session, worker_id)
        changes = data.model_dump(exclude_unset=True)
        if "full_name" in changes and not (changes["full_name"] or "").strip():
            abort(400, "BAD_REQUEST", "full_name 不能为空")
        for key, value in changes.items():
            setattr(worker, key, value.strip() if isinstance(value, str) else value)
        session.add(worker)
    session.refresh(worker)
    return worker


@router.delete("/{worker_id}")
def delete_worker(
        worker_id: int,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    with unit_of_work(session):
        worker = _get_worker(session, worker_id)
        worker.deleted = True
        session.add(worker)
    return {"ok": True}
