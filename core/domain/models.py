from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class DecisionAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class Trend(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    SIDEWAYS = "sideways"


class AlertKind(str, Enum):
    SCALPING_TARGET = "scalping_target"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"


@dataclass
class Position:
    symbol: str
    quantity: float
    entry_price: float
    current_price: float
    leverage: int
    entry_time: int
    unrealized_pnl: float = 0.0
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None


@dataclass(frozen=True)
class Trade:
    id: str
    symbol: str
    side: TradeSide
    quantity: float
    price: float
    timestamp: int
    confidence: float
    rationale: str
    # Entry price of the position a SELL reduced; None for BUY trades.
    entry_price: Optional[float] = None


@dataclass
class Portfolio:
    cash: float
    total_value: float
    positions: List[Position] = field(default_factory=list)
    trades: List[Trade] = field(default_factory=list)
    total_return: float = 0.0


@dataclass(frozen=True)
class TradingStrategy:
    name: str
    risk_per_trade: float
    max_positions: int
    min_confidence: float
    use_trailing_stop: bool = False
    trailing_stop_percent: float = 0.0
    use_dca: bool = False
    dca_levels: int = 0
    use_scalping: bool = False
    scalping_target_percent: float = 0.0
    use_market_timing: bool = False
    avoid_weekends: bool = False
    max_leverage: int = 1
    diversification: bool = True


@dataclass(frozen=True)
class Decision:
    symbol: str
    action: DecisionAction
    confidence: float
    rationale: str = ""
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None


@dataclass(frozen=True)
class TimeframeIndicators:
    rsi7: float
    rsi14: float
    ema20: float
    ema50: float
    macd: float
    macd_signal: float
    macd_histogram: float
    trend: Trend
    strength: float


MultiTimeframeIndicatorSet = Dict[str, TimeframeIndicators]


@dataclass(frozen=True)
class TrendSummary:
    overall_trend: Trend
    strength: float
    consensus: float


@dataclass(frozen=True)
class IndicatorSnapshot:
    rsi7: float
    rsi14: float
    ema20: float
    macd: float
    macd_signal: float
    macd_histogram: float
    volatility: float
    price_history: List[float]
    ema_history: List[float]
    macd_history: List[float]
    rsi_history: List[float]
    multi_timeframe: MultiTimeframeIndicatorSet
    trend: TrendSummary


@dataclass(frozen=True)
class DecisionRequest:
    symbol: str
    price: float
    indicators: IndicatorSnapshot
    open_positions: List[Position]
    portfolio_value: float
    cash: float


@dataclass(frozen=True)
class PositionAlert:
    kind: AlertKind
    symbol: str
    price: float
    threshold: float


@dataclass(frozen=True)
class DrawdownResult:
    max_drawdown: float
    peak: float
    trough: float


@dataclass(frozen=True)
class RiskMetrics:
    var_95: float
    sharpe_ratio: float
    max_drawdown: float
    win_rate: float
    profit_factor: float
