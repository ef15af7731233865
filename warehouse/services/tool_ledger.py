import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, update
from sqlmodel import Session, select

from warehouse.db import unit_of_work, utcnow
from warehouse.error import (
    CannotReduceBelowIssued,
    InsufficientToolAvailability,
    InvalidQuantity,
    NoOutstandingAssignment,
    ReturnExceedsAssigned,
    ToolNotFound,
    WorkerNotFound,
    abort,
)
from warehouse.models import Tool, ToolAssignment, Worker

logger = logging.getLogger(__name__)


@dataclass
class ReturnResult:
    assignment: ToolAssignment
    returned: int
    closed: bool
    available_quantity: int


def _positive(value, what: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise InvalidQuantity(f"{what}必须是 >= 1 的整数，收到：{value!r}")
    return value


def _lock_tool(session: Session, tool_id: int, *, include_deleted: bool = False) -> Tool:
    stmt = (
        select(Tool)
        .where(Tool.id == tool_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    tool = session.exec(stmt).first()
    if tool is None or (tool.deleted and not include_deleted):
        raise ToolNotFound(tool_id)
    return tool


def _get_worker(session: Session, worker_id: int) -> Worker:
    worker = session.get(Worker, worker_id)
    if worker is None or worker.deleted:
        raise WorkerNotFound(worker_id)
    return worker


def _outstanding(session: Session, tool_id: int, worker_id: int) -> Optional[ToolAssignment]:
    stmt = (
        select(ToolAssignment)
        .where(
            ToolAssignment.tool_id == tool_id,
            ToolAssignment.worker_id == worker_id,
            ToolAssignment.returned_at.is_(None),
        )
        .order_by(ToolAssignment.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return session.exec(stmt).first()


def _available(session: Session, tool_id: int) -> int:
    return session.exec(select(Tool.available_quantity).where(Tool.id == tool_id)).one()


def create_tool(session: Session, name: str, total_quantity: int = 1) -> Tool:
    name_clean = (name or "").strip()
    if not name_clean:
        abort(400, "BAD_REQUEST", "name 不能为空")
    _positive(total_quantity, "总数")

    with unit_of_work(session):
        tool = Tool(name=name_clean, total_quantity=total_quantity, available_quantity=total_quantity)
        session.add(tool)
    session.refresh(tool)
    return tool


def assign_tool(session: Session, tool_id: int, worker_id: int, quantity: int = 1) -> ToolAssignment:
    """
    借出工具。可用数量在事务内用条件更新原子扣减：
    UPDATE tool SET available = available - q WHERE id = ? AND available >= q
    同一 (工具, 工人) 只保留一条未归还记录，再借就累加到这条上。
    """
    _positive(quantity, "借出数量")

    with unit_of_work(session):
        tool = _lock_tool(session, tool_id)
        _get_worker(session, worker_id)

        if quantity > tool.available_quantity:
            raise InsufficientToolAvailability(tool.name, quantity, tool.available_quantity)

        res = session.exec(
            update(Tool)
            .where(Tool.id == tool_id, Tool.available_quantity >= quantity)
            .values(available_quantity=Tool.available_quantity - quantity, updated_at=utcnow())
        )
        if res.rowcount != 1:
            # 读完到更新之间被别人借走了
            raise InsufficientToolAvailability(tool.name, quantity, _available(session, tool_id))

        assignment = _outstanding(session, tool_id, worker_id)
        if assignment is None:
            assignment = ToolAssignment(tool_id=tool_id, worker_id=worker_id, quantity=quantity)
        else:
            assignment.quantity += quantity
        session.add(assignment)

    session.refresh(assignment)
    logger.info("tool %s: %d assigned to worker %s", tool_id, quantity, worker_id)
    return assignment


def return_tool(session: Session, tool_id: int, worker_id: int, quantity: Optional[int] = None) -> ReturnResult:
    """
    归还工具。不传 quantity 就全部归还。
    部分归还：减少记录上的数量，记录保持未归还；
    全部归还：写 returned_at，quantity 保留为最后归还的数量。
    """
    with unit_of_work(session):
        _lock_tool(session, tool_id, include_deleted=True)
        assignment = _outstanding(session, tool_id, worker_id)
        if assignment is None:
            raise NoOutstandingAssignment(tool_id, worker_id)

        qty = assignment.quantity if quantity is None else _positive(quantity, "归还数量")
        if qty > assignment.quantity:
            raise ReturnExceedsAssigned(qty, assignment.quantity)

        closed = qty == assignment.quantity
        if closed:
            assignment.returned_at = utcnow()
        else:
            assignment.quantity -= qty
        session.add(assignment)

        session.exec(
            update(Tool)
            .where(Tool.id == tool_id)
            .values(available_quantity=Tool.available_quantity + qty, updated_at=utcnow())
        )
        available = _available(session, tool_id)

    session.refresh(assignment)
    logger.info("tool %s: %d returned by worker %s (closed: %s)", tool_id, qty, worker_id, closed)
    return ReturnResult(assignment=assignment, returned=qty, closed=closed, available_quantity=available)


def update_tool(
    session: Session,
    tool_id: int,
    name: Optional[str] = None,
    total_quantity: Optional[int] = None,
) -> Tool:
    """
    改名和改总数在同一个事务里：任何一项不合法，两项都不生效。

    总数不能小于已借出的数量；借出数量保持不变，
    available = new_total - issued。
    """
    values = {}
    if name is not None:
        name_clean = name.strip()
        if not name_clean:
            abort(400, "BAD_REQUEST", "name 不能为空")
        values["name"] = name_clean
    if total_quantity is not None:
        _positive(total_quantity, "总数")

    with unit_of_work(session):
        tool = _lock_tool(session, tool_id)
        if total_quantity is not None:
            issued = tool.total_quantity - tool.available_quantity
            if total_quantity < issued:
                raise CannotReduceBelowIssued(total_quantity, issued)
            growth = total_quantity - tool.total_quantity
            values["total_quantity"] = Tool.total_quantity + growth
            values["available_quantity"] = Tool.available_quantity + growth

        if values:
            values["updated_at"] = utcnow()
            session.exec(update(Tool).where(Tool.id == tool_id).values(**values))

    session.refresh(tool)
    return tool


def set_tool_total_quantity(session: Session, tool_id: int, new_total: int) -> Tool:
    return update_tool(session, tool_id, total_quantity=new_total)


def rename_tool(session: Session, tool_id: int, name: str) -> Tool:
    return update_tool(session, tool_id, name=name or "")


def outstanding_assignments(session: Session, *, tool_id: Optional[int] = None, worker_id: Optional[int] = None):
    stmt = select(ToolAssignment).where(ToolAssignment.returned_at.is_(None))
    if tool_id is not None:
        stmt = stmt.where(ToolAssignment.tool_id == tool_id)
    if worker_id is not None:
        stmt = stmt.where(ToolAssignment.worker_id == worker_id)
    return session.exec(stmt.order_by(ToolAssignment.id)).all()


def soft_delete_tool(session: Session, tool_id: int) -> None:
    with unit_of_work(session):
        tool = _lock_tool(session, tool_id)
        tool.deleted = True
        session.add(tool)


def purge_tool(session: Session, tool_id: int) -> int:
    """彻底删除工具及其全部借还记录，返回删掉的记录数。"""
    with unit_of_work(session):
        tool = _lock_tool(session, tool_id, include_deleted=True)
        res = session.exec(delete(ToolAssignment).where(ToolAssignment.tool_id == tool_id))
        session.delete(tool)
    logger.info("tool %s purged with %d assignments", tool_id, res.rowcount)
    return res.rowcount
