from .models import (
    AlertKind,
    Decision,
    DecisionAction,
    DecisionRequest,
    DrawdownResult,
    IndicatorSnapshot,
    MultiTimeframeIndicatorSet,
    Portfolio,
    Position,
    PositionAlert,
    RiskMetrics,
    TimeframeIndicators,
    Trade,
    TradeSide,
    TradingStrategy,
    Trend,
    TrendSummary,
)

__all__ = [
    "AlertKind",
    "Decision",
    "DecisionAction",
    "DecisionRequest",
    "DrawdownResult",
    "IndicatorSnapshot",
    "MultiTimeframeIndicatorSet",
    "Portfolio",
    "Position",
    "PositionAlert",
    "RiskMetrics",
    "TimeframeIndicators",
    "Trade",
    "TradeSide",
    "TradingStrategy",
    "Trend",
    "TrendSummary",
]
