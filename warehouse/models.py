from typing import Optional
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, JSON
from sqlmodel import SQLModel, Field, Relationship

from warehouse.db import utcnow

MAX_STOCK = 65535


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    role: str = Field(default="worker")  # admin / worker
    permissions: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)


class Product(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint(f"quantity >= 0 AND quantity <= {MAX_STOCK}", name="product_quantity_range"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    name_normalized: str = Field(index=True, unique=True)  # 小写，用来判重
    unit: str = Field(default="")
    quantity: int = Field(default=0)  # 缓存值 = 所有明细 delta 之和
    sku: Optional[str] = None
    deleted: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Supplier(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    phone: Optional[str] = None
    email: Optional[str] = None
    deleted: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


class Location(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    city: Optional[str] = None
    district: Optional[str] = None
    address: Optional[str] = None
    deleted: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


class Worker(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str = Field(index=True)
    phone: Optional[str] = None
    position: Optional[str] = None
    deleted: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


class Movement(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    type: str = Field(index=True)  # in / out
    date: datetime = Field(default_factory=utcnow, index=True)

    # 名称在写入时快照，供应商/目的地改名或删除不影响历史
    supplier_id: Optional[int] = Field(default=None, foreign_key="supplier.id", index=True)
    supplier_name: Optional[str] = None
    destination_id: Optional[int] = Field(default=None, foreign_key="location.id", index=True)
    destination_name: Optional[str] = None
    worker_id: Optional[int] = Field(default=None, foreign_key="worker.id", index=True)
    worker_name: Optional[str] = None
    author_id: Optional[int] = Field(default=None, foreign_key="user.id")

    note: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    items: list["MovementItem"] = Relationship(
        back_populates="movement",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "order_by": "MovementItem.id"},
    )


class MovementItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    movement_id: int = Field(foreign_key="movement.id", index=True)
    # 商品被彻底删除(purge)后置空，快照字段保留
    product_id: Optional[int] = Field(default=None, foreign_key="product.id", index=True)
    product_name: str
    product_sku: Optional[str] = None

    delta: int  # 带符号：入库 +10 / 出库 -3

    movement: Optional[Movement] = Relationship(back_populates="items")


class Tool(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint(
            "available_quantity >= 0 AND available_quantity <= total_quantity",
            name="tool_available_range",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    total_quantity: int = Field(default=1)
    available_quantity: int = Field(default=1)  # = total - 借出未还
    deleted: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ToolAssignment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    tool_id: int = Field(foreign_key="tool.id", index=True)
    worker_id: int = Field(foreign_key="worker.id", index=True)
    quantity: int = Field(default=1)

    assigned_at: datetime = Field(default_factory=utcnow)
    returned_at: Optional[datetime] = None  # None = 未归还
