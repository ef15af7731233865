import pytest
from sqlalchemy import func
from sqlmodel import select

from warehouse.error import (
    CannotReduceBelowIssued,
    InsufficientToolAvailability,
    InvalidQuantity,
    NoOutstandingAssignment,
    ReturnExceedsAssigned,
    ToolNotFound,
    WorkerNotFound,
)
from warehouse.models import Tool, ToolAssignment, Worker
from warehouse.services import tool_ledger


@pytest.fixture
def crew(session):
    w1 = Worker(full_name="Алексей")
    w2 = Worker(full_name="Дмитрий")
    session.add_all([w1, w2])
    session.commit()
    return w1.id, w2.id


def _tool(session, tool_id) -> Tool:
    session.expire_all()
    return session.get(Tool, tool_id)


def _assert_conserved(session, tool_id):
    tool = _tool(session, tool_id)
    outstanding = session.exec(
        select(func.coalesce(func.sum(ToolAssignment.quantity), 0)).where(
            ToolAssignment.tool_id == tool_id, ToolAssignment.returned_at.is_(None)
        )
    ).one()
    assert outstanding == tool.total_quantity - tool.available_quantity
    assert 0 <= tool.available_quantity <= tool.total_quantity


def test_scenario_d(session, crew):
    w1, w2 = crew
    tool = tool_ledger.create_tool(session, "Перфоратор", 5)

    a1 = tool_ledger.assign_tool(session, tool.id, w1, 3)
    assert a1.quantity == 3
    assert _tool(session, tool.id).available_quantity == 2

    with pytest.raises(InsufficientToolAvailability) as ei:
        tool_ledger.assign_tool(session, tool.id, w2, 3)
    assert ei.value.requested == 3
    assert ei.value.available == 2
    assert _tool(session, tool.id).available_quantity == 2

    result = tool_ledger.return_tool(session, tool.id, w1, 1)
    assert result.returned == 1
    assert result.closed is False
    assert result.available_quantity == 3
    assert result.assignment.quantity == 2
    assert result.assignment.returned_at is None
    _assert_conserved(session, tool.id)


def test_second_assign_merges_into_open_row(session, crew):
    w1, _ = crew
    tool = tool_ledger.create_tool(session, "Шуруповёрт", 4)

    first = tool_ledger.assign_tool(session, tool.id, w1, 1)
    second = tool_ledger.assign_tool(session, tool.id, w1, 2)
    assert second.id == first.id
    assert second.quantity == 3
    assert len(tool_ledger.outstanding_assignments(session, tool_id=tool.id)) == 1
    _assert_conserved(session, tool.id)


def test_full_return_closes_assignment(session, crew):
    w1, _ = crew
    tool = tool_ledger.create_tool(session, "Болгарка", 2)
    tool_ledger.assign_tool(session, tool.id, w1, 2)

    result = tool_ledger.return_tool(session, tool.id, w1)
    assert result.closed is True
    assert result.returned == 2
    assert result.assignment.quantity == 2
    assert result.assignment.returned_at is not None
    assert result.available_quantity == 2

    with pytest.raises(NoOutstandingAssignment):
        tool_ledger.return_tool(session, tool.id, w1)
    _assert_conserved(session, tool.id)


def test_return_errors(session, crew):
    w1, w2 = crew
    tool = tool_ledger.create_tool(session, "Лазерный уровень", 3)
    tool_ledger.assign_tool(session, tool.id, w1, 2)

    with pytest.raises(ReturnExceedsAssigned) as ei:
        tool_ledger.return_tool(session, tool.id, w1, 3)
    assert ei.value.assigned == 2
    with pytest.raises(InvalidQuantity):
        tool_ledger.return_tool(session, tool.id, w1, 0)
    with pytest.raises(NoOutstandingAssignment):
        tool_ledger.return_tool(session, tool.id, w2, 1)
    with pytest.raises(ToolNotFound):
        tool_ledger.return_tool(session, 999, w1, 1)

    assert _tool(session, tool.id).available_quantity == 1
    _assert_conserved(session, tool.id)


def test_assign_errors(session, crew):
    w1, _ = crew
    tool = tool_ledger.create_tool(session, "Стремянка", 1)

    with pytest.raises(InvalidQuantity):
        tool_ledger.assign_tool(session, tool.id, w1, 0)
    with pytest.raises(WorkerNotFound):
        tool_ledger.assign_tool(session, tool.id, 999, 1)
    with pytest.raises(ToolNotFound):
        tool_ledger.assign_tool(session, 999, w1, 1)

    worker = session.get(Worker, w1)
    worker.deleted = True
    session.add(worker)
    session.commit()
    with pytest.raises(WorkerNotFound):
        tool_ledger.assign_tool(session, tool.id, w1, 1)

    assert _tool(session, tool.id).available_quantity == 1


def test_soft_deleted_tool_can_still_be_returned(session, crew):
    w1, _ = crew
    tool = tool_ledger.create_tool(session, "Сварочный аппарат", 1)
    tool_ledger.assign_tool(session, tool.id, w1, 1)
    tool_ledger.soft_delete_tool(session, tool.id)

    with pytest.raises(ToolNotFound):
        tool_ledger.assign_tool(session, tool.id, w1, 1)

    result = tool_ledger.return_tool(session, tool.id, w1)
    assert result.available_quantity == 1


def test_set_total_quantity_keeps_issued(session, crew):
    w1, w2 = crew
    tool = tool_ledger.create_tool(session, "Дрель", 5)
    tool_ledger.assign_tool(session, tool.id, w1, 2)
    tool_ledger.assign_tool(session, tool.id, w2, 1)

    updated = tool_ledger.set_tool_total_quantity(session, tool.id, 8)
    assert (updated.total_quantity, updated.available_quantity) == (8, 5)

    updated = tool_ledger.set_tool_total_quantity(session, tool.id, 3)
    assert (updated.total_quantity, updated.available_quantity) == (3, 0)

    with pytest.raises(CannotReduceBelowIssued) as ei:
        tool_ledger.set_tool_total_quantity(session, tool.id, 2)
    assert ei.value.issued == 3
    with pytest.raises(InvalidQuantity):
        tool_ledger.set_tool_total_quantity(session, tool.id, 0)

    assert _tool(session, tool.id).total_quantity == 3
    _assert_conserved(session, tool.id)


def test_tool_conservation_over_a_sequence(session, crew):
    w1, w2 = crew
    tool = tool_ledger.create_tool(session, "Рулетка", 6)

    tool_ledger.assign_tool(session, tool.id, w1, 2)
    tool_ledger.assign_tool(session, tool.id, w2, 3)
    tool_ledger.return_tool(session, tool.id, w2, 1)
    tool_ledger.assign_tool(session, tool.id, w1, 1)
    with pytest.raises(InsufficientToolAvailability):
        tool_ledger.assign_tool(session, tool.id, w2, 5)
    tool_ledger.set_tool_total_quantity(session, tool.id, 7)
    tool_ledger.return_tool(session, tool.id, w1)

    _assert_conserved(session, tool.id)
    assert _tool(session, tool.id).available_quantity == 5


def test_purge_tool_removes_assignments(session, crew):
    w1, _ = crew
    tool = tool_ledger.create_tool(session, "Компрессор", 2)
    tool_ledger.assign_tool(session, tool.id, w1, 1)
    tool_ledger.return_tool(session, tool.id, w1)
    tool_ledger.assign_tool(session, tool.id, w1, 1)

    assert tool_ledger.purge_tool(session, tool.id) == 2
    assert _tool(session, tool.id) is None
    assert session.exec(select(ToolAssignment)).all() == []


def test_rename_tool(session):
    tool = tool_ledger.create_tool(session, "Ключ", 1)
    assert tool_ledger.rename_tool(session, tool.id, "  Ключ разводной ").name == "Ключ разводной"


def test_update_tool_is_all_or_nothing(session, crew):
    w1, _ = crew
    tool = tool_ledger.create_tool(session, "Дрель", 5)
    tool_ledger.assign_tool(session, tool.id, w1, 3)

    with pytest.raises(CannotReduceBelowIssued):
        tool_ledger.update_tool(session, tool.id, name="Дрель ударная", total_quantity=1)
    after = _tool(session, tool.id)
    assert (after.name, after.total_quantity, after.available_quantity) == ("Дрель", 5, 2)

    updated = tool_ledger.update_tool(session, tool.id, name="Дрель ударная", total_quantity=4)
    assert (updated.name, updated.total_quantity, updated.available_quantity) == ("Дрель ударная", 4, 1)
    _assert_conserved(session, tool.id)
