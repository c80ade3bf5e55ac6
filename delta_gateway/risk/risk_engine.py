"""
Risk metrics and the drawdown gate.

    total_equity        = Σ pnl of open positions
    total_exposure      = Σ |quantity × entry_price| of open positions
    exposure_pct        = total_exposure / total_equity × 100   (0 when equity is 0)
    current_drawdown_pct = |total_equity| / total_exposure × 100 when equity < 0, else 0

Metrics are recomputed on demand from the position set and never stored.
"""
from decimal import Decimal
from typing import Iterable

from delta_gateway.constants import DEFAULT_MAX_DRAWDOWN_PCT
from delta_gateway.domain.models import Position, RiskMetrics
from delta_gateway.exceptions import RiskLimitExceeded
from delta_gateway.monitoring.logger import get_logger

logger = get_logger(__name__)

_HUNDRED = Decimal("100")
_ZERO = Decimal("0")


class RiskEngine:
    """
    Pure risk calculator plus the open-position veto.
    """

    def __init__(self, max_drawdown_pct: float | Decimal = DEFAULT_MAX_DRAWDOWN_PCT):
        self.max_drawdown_pct = Decimal(str(max_drawdown_pct))

    def compute(self, positions: Iterable[Position]) -> RiskMetrics:
        total_equity = _ZERO
        total_exposure = _ZERO
        for position in positions:
            if not position.is_open:
                continue
            total_equity += position.pnl
            total_exposure += position.exposure

        if total_equity < 0 and total_exposure > 0:
            current_drawdown = abs(total_equity) / total_exposure * _HUNDRED
        else:
            current_drawdown = _ZERO

        exposure_pct = total_exposure / total_equity * _HUNDRED if total_equity != 0 else _ZERO

        return RiskMetrics(
            current_drawdown_pct=current_drawdown,
            max_drawdown_pct=self.max_drawdown_pct,
            total_equity=total_equity,
            exposure_pct=exposure_pct,
            total_exposure=total_exposure,
        )

    def check_can_open(self, positions: Iterable[Position]) -> RiskMetrics:
        """
        Veto a new position when drawdown is at or above the limit.

        Raises:
            RiskLimitExceeded: current_drawdown_pct >= max_drawdown_pct
        """
        metrics = self.compute(positions)
        if metrics.limit_breached:
            logger.warning(
                "New position rejected: drawdown limit reached",
                current_drawdown_pct=str(metrics.current_drawdown_pct),
                max_drawdown_pct=str(metrics.max_drawdown_pct),
                total_equity=str(metrics.total_equity),
            )
            raise RiskLimitExceeded(
                f"Drawdown {metrics.current_drawdown_pct:.2f}% >= limit {metrics.max_drawdown_pct}%",
                metrics=metrics,
            )
        return metrics
