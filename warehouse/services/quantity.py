from typing import Optional

from warehouse.error import InsufficientStock, StockCeilingExceeded
from warehouse.models import MAX_STOCK


def check_quantity(current: int, delta: int, name: Optional[str] = None) -> int:
    """
    库存边界校验（纯函数，不碰数据库）。

    delta 必须是同一商品在本次操作里合并后的净变化量，
    不能逐条明细单独校验。
    返回变化后的库存；越界抛 InsufficientStock / StockCeilingExceeded。
    """
    new_qty = current + delta
    if new_qty < 0:
        raise InsufficientStock(current, delta, name)
    if new_qty > MAX_STOCK:
        raise StockCeilingExceeded(current, delta, MAX_STOCK, name)
    return new_qty
