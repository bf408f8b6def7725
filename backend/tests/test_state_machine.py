import pytest

from bms_pos.models import Sale
from bms_pos.services.errors import AlreadyVoidedError, PartialSaleVoidForbiddenError, SaleNotPayableError
from bms_pos.services.sales_service import ACTION_PAY, ACTION_VOID, assert_transition


def _sale(status):
    return Sale(id=1, status=status)


@pytest.mark.parametrize("status", ["PAID", "PENDING"])
def test_void_allowed(status):
    assert_transition(_sale(status), ACTION_VOID)


@pytest.mark.parametrize("status", ["PENDING", "PARCIAL"])
def test_pay_allowed(status):
    assert_transition(_sale(status), ACTION_PAY)


@pytest.mark.parametrize("status,error", [
    ("ANULADO", AlreadyVoidedError),
    ("PARCIAL", PartialSaleVoidForbiddenError),
])
def test_void_forbidden(status, error):
    with pytest.raises(error):
        assert_transition(_sale(status), ACTION_VOID)


@pytest.mark.parametrize("status", ["PAID", "ANULADO"])
def test_pay_forbidden(status):
    with pytest.raises(SaleNotPayableError) as exc:
        assert_transition(_sale(status), ACTION_PAY)
    assert exc.value.details == {"sale_id": 1, "status": status, "action": "pay"}
