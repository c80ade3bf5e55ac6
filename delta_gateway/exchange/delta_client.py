"""
Delta Exchange REST operations on top of the resilient dispatcher.

Handles:
- Market metadata (bootstrap, outside the session gate)
- Wallet balances and margined positions (gated reads)
- Order placement and cancellation (gated, mutating)
"""
from typing import Any, Dict, List, Optional, Union

from delta_gateway.constants import (
    ORDERS_ENDPOINT,
    POSITIONS_ENDPOINT,
    PRODUCTS_ENDPOINT,
    WALLET_BALANCES_ENDPOINT,
)
from delta_gateway.domain.models import EmptyResult, OrderRequest
from delta_gateway.exchange.dispatcher import ResilientDispatcher
from delta_gateway.monitoring.logger import get_logger

logger = get_logger(__name__)

ReadResult = Union[List[Dict[str, Any]], EmptyResult]


class DeltaClient:
    """
    Typed venue calls. Every call goes through the dispatcher; nothing here
    signs, retries or gates on its own.
    """

    def __init__(self, dispatcher: ResilientDispatcher):
        self.dispatcher = dispatcher

    async def get_products(self, query: Optional[Dict[str, Any]] = None) -> ReadResult:
        """Market metadata. Read-only bootstrap call, allowed in any session state."""
        return await self.dispatcher.dispatch("GET", PRODUCTS_ENDPOINT, query=query, requires_active_session=False)

    async def get_balances(self) -> ReadResult:
        """Wallet balances."""
        return await self.dispatcher.dispatch("GET", WALLET_BALANCES_ENDPOINT)

    async def probe_balances(self) -> ReadResult:
        """
        Balance fetch used to verify credential and clock before the session
        is Active. Same wire call as get_balances, without the gate.
        """
        return await self.dispatcher.dispatch("GET", WALLET_BALANCES_ENDPOINT, requires_active_session=False)

    async def get_positions(self) -> ReadResult:
        """Venue's authoritative position snapshot."""
        return await self.dispatcher.dispatch("GET", POSITIONS_ENDPOINT)

    async def place_order(self, request: OrderRequest, gated: bool = True) -> Dict[str, Any]:
        """
        Place one order.

        Args:
            request: Order intent
            gated: Require an Active session. Reduce-only closing orders pass
                False so they can run after a stop or kill switch.

        Returns:
            Venue order dict (id, average_fill_price, limit_price, ...)
        """
        payload = request.to_payload()
        logger.info(
            "Placing order",
            product_id=request.product_id,
            side=request.side.value,
            order_type=request.order_type.value,
            size=str(request.quantity),
            reduce_only=request.reduce_only,
        )
        result = await self.dispatcher.dispatch(
            "POST", ORDERS_ENDPOINT, body=payload, requires_active_session=gated
        )
        return result if isinstance(result, dict) else {"result": result}

    async def cancel_order(self, order_id: Union[int, str], product_id: int) -> Dict[str, Any]:
        """Cancel one open order."""
        logger.info("Cancelling order", order_id=order_id, product_id=product_id)
        result = await self.dispatcher.dispatch(
            "DELETE", ORDERS_ENDPOINT, body={"id": order_id, "product_id": product_id}
        )
        return result if isinstance(result, dict) else {"result": result}
