import datetime
from decimal import Decimal

import pytest

from utils.helpers import decimal_to_float, ensure_utc, to_decimal


@pytest.mark.parametrize("value, expected", [
    (0.1, Decimal("0.1")),
    (250, Decimal("250")),
    ("4697.6", Decimal("4697.6")),
    (Decimal("1.50"), Decimal("1.50")),
    (None, None),
    ("", None),
])
def test_to_decimal(value, expected):
    assert to_decimal(value) == expected


def test_to_decimal_rejects_garbage():
    with pytest.raises(ValueError):
        to_decimal("12 litres")
    with pytest.raises(TypeError):
        to_decimal(True)


def test_ensure_utc_and_rounding():
    naive = datetime.datetime(2024, 3, 1, 6, 0)

    assert ensure_utc(naive).tzinfo is datetime.timezone.utc
    assert ensure_utc(None) is None
    assert decimal_to_float(Decimal("296.40000")) == 296.4
    assert decimal_to_float(None) is None
