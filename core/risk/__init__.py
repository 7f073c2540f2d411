from .metrics import (
    compute_risk_metrics,
    max_drawdown,
    profit_factor,
    sharpe_ratio,
    value_at_risk,
    win_rate,
)
from .manager import PortfolioManager, PortfolioSink

__all__ = [
    "PortfolioManager",
    "PortfolioSink",
    "compute_risk_metrics",
    "max_drawdown",
    "profit_factor",
    "sharpe_ratio",
    "value_at_risk",
    "win_rate",
]
