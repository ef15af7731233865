from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import func
from sqlmodel import SQLModel, Session, select

from warehouse.db import make_engine
from warehouse.error import CommitFailed, InsufficientStock, InsufficientToolAvailability
from warehouse.models import MovementItem, Product, Tool, ToolAssignment, Worker
from warehouse.services import stock, tool_ledger

THREADS = 8
ROUNDS = 10


@pytest.fixture
def file_engine(tmp_path):
    # 内存库只有一个连接，多线程并发要用文件库
    engine = make_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


def _hammer(engine, call, allowed):
    """每个线程一个 session 连续调 ROUNDS 次，按错误码计数。"""
    def worker(n):
        codes = []
        with Session(engine) as s:
            for _ in range(ROUNDS):
                try:
                    call(s, n)
                    codes.append("ok")
                except allowed as e:
                    codes.append(e.code)
        return codes

    with ThreadPoolExecutor(max_workers=THREADS) as pool:
        results = list(pool.map(worker, range(THREADS)))
    return [c for codes in results for c in codes]


def test_concurrent_out_movements_never_lose_or_oversell(file_engine):
    with Session(file_engine) as s:
        pid = stock.create_product(s, "Цемент", quantity=50).id

    codes = _hammer(
        file_engine,
        lambda s, n: stock.create_movement(s, "out", [(pid, 1)]),
        (InsufficientStock, CommitFailed),
    )

    with Session(file_engine) as s:
        qty = s.exec(select(Product.quantity).where(Product.id == pid)).one()
        item_sum = s.exec(select(func.sum(MovementItem.delta)).where(MovementItem.product_id == pid)).one()

    assert qty >= 0
    assert qty == item_sum
    # 每次成功的出库都恰好扣掉 1
    assert codes.count("ok") == 50 - qty
    assert set(codes) <= {"ok", "INSUFFICIENT_STOCK", "COMMIT_FAILED"}


def test_concurrent_assignments_conserve_tool_total(file_engine):
    with Session(file_engine) as s:
        tid = tool_ledger.create_tool(s, "Перфоратор", total_quantity=20).id
        workers = [Worker(full_name=f"Рабочий {n}") for n in range(THREADS)]
        s.add_all(workers)
        s.commit()
        worker_ids = [w.id for w in workers]

    codes = _hammer(
        file_engine,
        lambda s, n: tool_ledger.assign_tool(s, tid, worker_ids[n], 1),
        (InsufficientToolAvailability, CommitFailed),
    )

    with Session(file_engine) as s:
        tool = s.get(Tool, tid)
        open_rows = s.exec(
            select(ToolAssignment).where(ToolAssignment.tool_id == tid, ToolAssignment.returned_at.is_(None))
        ).all()

    assert tool.available_quantity >= 0
    assert tool.total_quantity == 20
    assert tool.available_quantity + sum(a.quantity for a in open_rows) == tool.total_quantity
    assert codes.count("ok") == 20 - tool.available_quantity
    # 同一 (工具, 工人) 只有一条未归还记录
    assert len({a.worker_id for a in open_rows}) == len(open_rows)
    assert set(codes) <= {"ok", "INSUFFICIENT_TOOL_AVAILABILITY", "COMMIT_FAILED"}
