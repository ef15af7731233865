from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlmodel import Session, select

from warehouse.db import get_session
from warehouse.deps import require_user
from warehouse.error import ToolNotFound, _forbidden_403, abort
from warehouse.models import Tool, User
from warehouse.schemas import (
    AssignmentRead,
    ToolAssign,
    ToolCreate,
    ToolListResponse,
    ToolRead,
    ToolReturn,
    ToolReturnRead,
    ToolUpdate,
    ToolWithAssignments,
)
from warehouse.services import tool_ledger

router = APIRouter(prefix="/tools", tags=["tools"])


def _with_assignments(session: Session, tool: Tool) -> dict:
    data = ToolRead.model_validate(tool).model_dump()
    data["assignments"] = tool_ledger.outstanding_assignments(session, tool_id=tool.id)
    return data


@router.post("", response_model=ToolRead)
def create_tool(
        data: ToolCreate,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return tool_ledger.create_tool(session, data.name, data.total_quantity)


@router.get("", response_model=ToolListResponse)
def list_tools(
        q: str | None = None,
        include_deleted: bool = False,
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
        sort: str = Query(
            "id_desc",
            description="排序：id_desc/id_asc/name_asc/name_desc/avail_asc/avail_desc",
        ),
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    conds = []
    if not include_deleted:
        conds.append(Tool.deleted == False)  # noqa: E712
    if q:
        conds.append(Tool.name.contains(q))

    count_stmt = select(func.count()).select_from(Tool)
    if conds:
        count_stmt = count_stmt.where(*conds)
    total = session.exec(count_stmt).one()

    order_map = {
        "id_desc": Tool.id.desc(),
        "id_asc": Tool.id.asc(),
        "name_asc": Tool.name.asc(),
        "name_desc": Tool.name.desc(),
        "avail_asc": Tool.available_quantity.asc(),
        "avail_desc": Tool.available_quantity.desc(),
    }
    if sort not in order_map:
        abort(400, "BAD_REQUEST", f"sort 不支持：{sort}")

    items_stmt = select(Tool)
    if conds:
        items_stmt = items_stmt.where(*conds)
    items = session.exec(items_stmt.order_by(order_map[sort]).offset(offset).limit(limit)).all()

    return {"items": items, "total": total, "limit": limit, "offset": offset, "q": q}


@router.get("/{tool_id}", response_model=ToolWithAssignments)
def get_tool(
        tool_id: int,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    tool = session.get(Tool, tool_id)
    if not tool:
        raise ToolNotFound(tool_id)
    return _with_assignments(session, tool)


@router.patch("/{tool_id}", response_model=ToolWithAssignments)
def update_tool(
        tool_id: int,
        data: ToolUpdate,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    tool = tool_ledger.update_tool(session, tool_id, name=data.name, total_quantity=data.total_quantity)
    return _with_assignments(session, tool)


@router.delete("/{tool_id}")
def delete_tool(
        tool_id: int,
        purge: bool = Query(False, description="true = 彻底删除（连同借还记录），仅管理员"),
        session: Session = Depends(get_session),
        user: User = Depends(require_user),
):
    if purge:
        if user.role != "admin":
            raise _forbidden_403("彻底删除仅管理员可操作")
        removed = tool_ledger.purge_tool(session, tool_id)
        return {"ok": True, "purged": True, "assignments_deleted": removed}

    tool_ledger.soft_delete_tool(session, tool_id)
    return {"ok": True, "purged": False}


@router.post("/{tool_id}/assign", response_model=AssignmentRead)
def assign_tool(
        tool_id: int,
        data: ToolAssign,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    return tool_ledger.assign_tool(session, tool_id, data.worker_id, data.quantity)


@router.post("/{tool_id}/return", response_model=ToolReturnRead)
def return_tool(
        tool_id: int,
        data: ToolReturn,
        session: Session = Depends(get_session),
        _user: User = Depends(require_user),
):
    result = tool_ledger.return_tool(session, tool_id, data.worker_id, data.quantity)
    return {
        "assignment": result.assignment,
        "returned": result.returned,
        "closed": result.closed,
        "available_quantity": result.available_quantity,
    }
