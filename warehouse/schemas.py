from typing import Optional
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime

from warehouse.models import MAX_STOCK
from warehouse.services.ledger import MovementType


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---------- auth ----------

class UserCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1)


class UserRead(ORMModel):
    id: int
    username: str
    role: str
    permissions: dict


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# ---------- 商品 ----------

class ProductCreate(BaseModel):
    name: str
    unit: str = ""
    sku: Optional[str] = None
    quantity: int = Field(0, ge=0, description="初始库存，>0 时自动生成一张入库单")
    supplier_id: Optional[int] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    unit: Optional[str] = None
    sku: Optional[str] = None


class ProductRead(ORMModel):
    id: int
    name: str
    unit: str
    quantity: int
    sku: Optional[str] = None
    deleted: bool
    updated_at: datetime


class ProductListResponse(BaseModel):
    items: list[ProductRead]
    total: int
    limit: int
    offset: int
    q: Optional[str] = None


class ProductAdjust(BaseModel):
    type: MovementType
    delta: int = Field(..., description="正整数，方向由 type 决定")
    supplier_id: Optional[int] = None
    destination_id: Optional[int] = None
    worker_id: Optional[int] = None
    date: Optional[datetime] = None
    note: Optional[str] = None


class ProductDeleted(BaseModel):
    ok: bool = True
    purged: bool
    items_deleted: int = 0
    movements_deleted: int = 0


# ---------- 出入库 ----------

class MovementItemCreate(BaseModel):
    product_id: int
    delta: int = Field(..., description="正整数，方向由单据 type 决定")


class MovementCreate(BaseModel):
    type: MovementType
    items: list[MovementItemCreate] = Field(..., min_length=1)
    supplier_id: Optional[int] = None
    destination_id: Optional[int] = None
    worker_id: Optional[int] = None
    date: Optional[datetime] = None
    note: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"type": "in", "supplier_id": 1, "items": [{"product_id": 1, "delta": 50}]},
                {"type": "out", "destination_id": 2, "worker_id": 3,
                 "items": [{"product_id": 1, "delta": 5}, {"product_id": 2, "delta": 10}]},
            ]
        }
    }


class MovementItemRead(ORMModel):
    id: int
    movement_id: int
    product_id: Optional[int] = None
    product_name: str
    product_sku: Optional[str] = None
    delta: int


class MovementRead(ORMModel):
    id: int
    type: MovementType
    date: datetime
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    destination_id: Optional[int] = None
    destination_name: Optional[str] = None
    worker_id: Optional[int] = None
    worker_name: Optional[str] = None
    author_id: Optional[int] = None
    note: Optional[str] = None
    created_at: datetime
    items: list[MovementItemRead]


class MovementCreated(BaseModel):
    movement: MovementRead
    quantities: dict[int, int]


class MovementListResponse(BaseModel):
    items: list[MovementRead]
    total: int
    limit: int
    offset: int


class MovementSort(str, Enum):
    date_desc = "date_desc"
    date_asc = "date_asc"
    id_desc = "id_desc"
    id_asc = "id_asc"
    type_asc = "type_asc"
    type_desc = "type_desc"


class MovementNoteUpdate(BaseModel):
    note: Optional[str] = None


class ItemDeltaUpdate(BaseModel):
    delta: int = Field(..., description="新的数量（正整数）")


class ItemResultRead(BaseModel):
    item: MovementItemRead
    quantity: Optional[int] = None


class ItemDeletedRead(BaseModel):
    ok: bool = True
    item_id: int
    movement_id: int
    movement_deleted: bool
    product_id: Optional[int] = None
    quantity: Optional[int] = None


# ---------- 工具 ----------

class ToolCreate(BaseModel):
    name: str
    total_quantity: int = Field(1, ge=1)


class ToolUpdate(BaseModel):
    name: Optional[str] = None
    total_quantity: Optional[int] = Field(None, ge=1)


class AssignmentRead(ORMModel):
    id: int
    tool_id: int
    worker_id: int
    quantity: int
    assigned_at: datetime
    returned_at: Optional[datetime] = None


class ToolRead(ORMModel):
    id: int
    name: str
    total_quantity: int
    available_quantity: int
    deleted: bool
    updated_at: datetime


class ToolWithAssignments(ToolRead):
    assignments: list[AssignmentRead] = []


class ToolListResponse(BaseModel):
    items: list[ToolRead]
    total: int
    limit: int
    offset: int
    q: Optional[str] = None


class ToolAssign(BaseModel):
    worker_id: int
    quantity: int = 1


class ToolReturn(BaseModel):
    worker_id: int
    quantity: Optional[int] = Field(None, description="不填则全部归还")


class ToolReturnRead(BaseModel):
    assignment: AssignmentRead
    returned: int
    closed: bool
    available_quantity: int


# ---------- 工人 / 供应商 / 目的地 ----------

class WorkerCreate(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    position: Optional[str] = None


class WorkerUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    position: Optional[str] = None


class WorkerRead(ORMModel):
    id: int
    full_name: str
    phone: Optional[str] = None
    position: Optional[str] = None
    deleted: bool


class WorkerWithTools(WorkerRead):
    assignments: list[AssignmentRead] = []


class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    email: Optional[str] = None


class SupplierUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class SupplierRead(ORMModel):
    id: int
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    deleted: bool


class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1)
    city: Optional[str] = None
    district: Optional[str] = None
    address: Optional[str] = None


class LocationUpdate(BaseModel):
    name: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    address: Optional[str] = None


class LocationRead(ORMModel):
    id: int
    name: str
    city: Optional[str] = None
    district: Optional[str] = None
    address: Optional[str] = None
    deleted: bool


# ---------- 报表 ----------

class InventoryStatusRow(BaseModel):
    id: int
    name: str
    unit: str
    current_stock: int = Field(..., ge=0, le=MAX_STOCK)
    monthly_inflow: int
    monthly_outflow: int
    turnover_rate: float
    last_movement: Optional[datetime] = None


class DailyRow(BaseModel):
    date: str
    in_: int = Field(..., alias="in")
    out: int
    total: int

    model_config = ConfigDict(populate_by_name=True)


class TransactionSummary(BaseModel):
    total: int
    incoming: int
    outgoing: int
    daily: list[DailyRow]


class TopProductRow(BaseModel):
    id: int
    name: str
    total: int


class WorkerPerformanceRow(BaseModel):
    worker_id: int
    worker_name: str
    transaction_count: int
    total_quantity: int


class DestinationStatsRow(BaseModel):
    destination_id: int
    destination_name: str
    transaction_count: int
    total_quantity: int


class SupplierStatsRow(BaseModel):
    supplier_id: int
    supplier_name: str
    transaction_count: int
    total_quantity: int


class ForecastRow(BaseModel):
    product_id: int
    product_name: str
    current_stock: int
    avg_daily_consumption: float
    days_to_stockout: float


class DashboardStats(BaseModel):
    total_products: int
    today_movements: int
    last_activity: Optional[datetime] = None
