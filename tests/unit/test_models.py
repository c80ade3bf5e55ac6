"""
Domain model validation and order payloads.
"""
from decimal import Decimal

import pytest

from delta_gateway.domain.models import (
    Credential,
    EmptyResult,
    OrderRequest,
    OrderSide,
    OrderType,
    Side,
)
from delta_gateway.exceptions import InvalidCredentialFormat


class TestCredential:

    def test_valid(self):
        credential = Credential(key="k", secret="s", base_url="https://api.delta.exchange")
        assert "secret=" not in repr(credential)

    @pytest.mark.parametrize("key,secret,base_url", [
        ("", "s", "https://x"),
        ("k", "", "https://x"),
        ("${DELTA_API_KEY}", "s", "https://x"),
        ("k", "${DELTA_API_SECRET}", "https://x"),
        (" k", "s", "https://x"),
        ("k", "s s", "https://x"),
        ("k", "s", "ftp://x"),
    ])
    def test_malformed_rejected(self, key, secret, base_url):
        with pytest.raises(InvalidCredentialFormat):
            Credential(key=key, secret=secret, base_url=base_url)


class TestOrderRequest:

    def test_market_payload(self):
        request = OrderRequest(product_id=27, side=OrderSide.BUY, quantity=1)
        assert request.quantity == Decimal("1")
        assert request.to_payload() == {
            "product_id": 27,
            "size": 1,
            "side": "buy",
            "order_type": "market_order",
        }

    def test_limit_reduce_only_payload(self):
        request = OrderRequest(
            product_id=27,
            side=OrderSide.SELL,
            quantity=Decimal("0.5"),
            order_type=OrderType.LIMIT,
            limit_price=Decimal("101.5"),
            reduce_only=True,
        )
        assert request.to_payload() == {
            "product_id": 27,
            "size": "0.5",
            "side": "sell",
            "order_type": "limit_order",
            "limit_price": "101.5",
            "reduce_only": True,
        }

    @pytest.mark.parametrize("qty", [0, -1])
    def test_non_positive_quantity(self, qty):
        with pytest.raises(ValueError):
            OrderRequest(product_id=27, side=OrderSide.BUY, quantity=qty)

    def test_limit_needs_price(self):
        with pytest.raises(ValueError):
            OrderRequest(product_id=27, side=OrderSide.BUY, quantity=1, order_type=OrderType.LIMIT)


def test_side_mapping():
    assert OrderSide.BUY.position_side is Side.LONG
    assert OrderSide.SELL.position_side is Side.SHORT
    assert Side.LONG.closing_order_side is OrderSide.SELL
    assert Side.SHORT.closing_order_side is OrderSide.BUY


def test_empty_result_is_falsy_and_empty():
    result = EmptyResult(method="GET", path="/positions")
    assert not result
    assert len(result) == 0
    assert list(result) == []
