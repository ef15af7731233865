from typing import Optional
from fastapi import HTTPException


def _auth_401(code: str, message: str) -> HTTPException:
    # ✅ 建议保留 WWW-Authenticate，符合 Bearer 规范
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_403(message: str = "权限不足") -> HTTPException:
    return HTTPException(status_code=403, detail={"code": "FORBIDDEN", "message": message})


def abort(status_code: int, code: str, message: str) -> None:
    raise HTTPException(status_code=status_code, detail={"code": code, "message": message})


class LedgerError(HTTPException):
    """
    台账业务错误：和 abort() 同一个返回格式 {"detail": {"code", "message"}}，
    但带具体类型，service 层直接 raise，测试里可以按类型断言。
    """

    status_code = 400
    code = "LEDGER_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(
            status_code=type(self).status_code,
            detail={"code": self.code, "message": message},
        )


# ---- 输入校验 ----

class InvalidDelta(LedgerError):
    code = "INVALID_DELTA"

    def __init__(self, delta):
        self.delta = delta
        super().__init__(f"数量必须是正整数，收到：{delta!r}")


class InvalidMovement(LedgerError):
    code = "INVALID_MOVEMENT"


class InvalidQuantity(LedgerError):
    code = "INVALID_QUANTITY"


# ---- 引用不存在 ----

class ProductNotFound(LedgerError):
    status_code = 404
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(f"商品不存在：{product_id}")


class CounterpartyNotFound(LedgerError):
    status_code = 404
    labels = {"supplier": "供应商", "destination": "目的地", "worker": "工人"}

    def __init__(self, kind: str, entity_id):
        self.kind = kind
        self.entity_id = entity_id
        self.code = f"{kind.upper()}_NOT_FOUND"
        super().__init__(f"{self.labels.get(kind, kind)}不存在：{entity_id}")


class MovementNotFound(LedgerError):
    status_code = 404
    code = "MOVEMENT_NOT_FOUND"

    def __init__(self, movement_id):
        self.movement_id = movement_id
        super().__init__(f"出入库单不存在：{movement_id}")


class ItemNotFound(LedgerError):
    status_code = 404
    code = "ITEM_NOT_FOUND"

    def __init__(self, item_id):
        self.item_id = item_id
        super().__init__(f"明细不存在：{item_id}")


class WrongMovement(LedgerError):
    code = "WRONG_MOVEMENT"

    def __init__(self, item_id, movement_id):
        self.item_id = item_id
        self.movement_id = movement_id
        super().__init__(f"明细 {item_id} 不属于出入库单 {movement_id}")


class ToolNotFound(LedgerError):
    status_code = 404
    code = "TOOL_NOT_FOUND"

    def __init__(self, tool_id):
        self.tool_id = tool_id
        super().__init__(f"工具不存在：{tool_id}")


class WorkerNotFound(LedgerError):
    status_code = 404
    code = "WORKER_NOT_FOUND"

    def __init__(self, worker_id):
        self.worker_id = worker_id
        super().__init__(f"工人不存在：{worker_id}")


class NoOutstandingAssignment(LedgerError):
    status_code = 404
    code = "NO_OUTSTANDING_ASSIGNMENT"

    def __init__(self, tool_id, worker_id):
        self.tool_id = tool_id
        self.worker_id = worker_id
        super().__init__(f"工具 {tool_id} 没有借给工人 {worker_id}")


# ---- 不变量 ----

class InsufficientStock(LedgerError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, current: int, delta: int, name: Optional[str] = None):
        self.current = current
        self.delta = delta
        self.name = name
        what = f"「{name}」" if name else ""
        super().__init__(f"库存不足{what}：当前 {current}，要出库 {-delta}")


class StockCeilingExceeded(LedgerError):
    code = "STOCK_CEILING_EXCEEDED"

    def __init__(self, current: int, delta: int, ceiling: int, name: Optional[str] = None):
        self.current = current
        self.delta = delta
        self.ceiling = ceiling
        self.name = name
        what = f"「{name}」" if name else ""
        super().__init__(f"超出库存上限 {ceiling}{what}：当前 {current}，变动 {delta:+d}")


class InsufficientToolAvailability(LedgerError):
    code = "INSUFFICIENT_TOOL_AVAILABILITY"

    def __init__(self, name: str, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(f"工具「{name}」可用数量不足：可用 {available}，申请 {requested}")


class ReturnExceedsAssigned(LedgerError):
    code = "RETURN_EXCEEDS_ASSIGNED"

    def __init__(self, requested: int, assigned: int):
        self.requested = requested
        self.assigned = assigned
        super().__init__(f"归还数量超过借出数量：借出 {assigned}，归还 {requested}")


class CannotReduceBelowIssued(LedgerError):
    code = "CANNOT_REDUCE_BELOW_ISSUED"

    def __init__(self, requested: int, issued: int):
        self.requested = requested
        self.issued = issued
        super().__init__(f"总数不能小于已借出的 {issued}（当前有 {issued} 件在工人手里），收到 {requested}")


# ---- 提交失败 ----

class CommitFailed(LedgerError):
    status_code = 500
    code = "COMMIT_FAILED"

    def __init__(self):
        super().__init__("提交失败，数据未变更，可以重试")
