import pytest

from warehouse.error import InsufficientStock, StockCeilingExceeded
from warehouse.models import MAX_STOCK
from warehouse.services.quantity import check_quantity


@pytest.mark.parametrize(
    "current, delta, expected",
    [
        (10, -10, 0),
        (0, 5, 5),
        (MAX_STOCK - 5, 5, MAX_STOCK),
        (7, 0, 7),
    ],
)
def test_check_quantity_within_bounds(current, delta, expected):
    assert check_quantity(current, delta) == expected


def test_check_quantity_below_zero():
    with pytest.raises(InsufficientStock) as ei:
        check_quantity(3, -4, "Цемент")
    err = ei.value
    assert err.status_code == 400
    assert err.detail["code"] == "INSUFFICIENT_STOCK"
    assert err.current == 3
    assert err.delta == -4
    assert "Цемент" in err.message


def test_check_quantity_above_ceiling():
    with pytest.raises(StockCeilingExceeded) as ei:
        check_quantity(65530, 10)
    assert ei.value.ceiling == MAX_STOCK
    assert ei.value.detail["code"] == "STOCK_CEILING_EXCEEDED"
