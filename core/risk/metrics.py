from typing import List, Sequence

import numpy as np

from core.domain import DrawdownResult, RiskMetrics, Trade, TradeSide

TRADING_PERIODS_PER_YEAR = 252
FALLBACK_VAR_PCT = 0.05
Z_SCORES = {0.95: 1.645, 0.99: 2.326}
DEFAULT_Z_SCORE = 1.96


# The trade log is stored newest first; every metric here walks it oldest first.
# Consecutive fill prices stand in for periodic returns, which overstates
# volatility when trades are sparse or span several symbols.
def _chronological(trades: Sequence[Trade]) -> List[Trade]:
    return list(reversed(trades))


def trade_returns(trades: Sequence[Trade]) -> List[float]:
    ordered = _chronological(trades)
    returns = []
    for previous, current in zip(ordered, ordered[1:]):
        if previous.price:
            returns.append((current.price - previous.price) / previous.price * 100)
    return returns


def value_at_risk(
    trades: Sequence[Trade],
    total_value: float,
    confidence: float = 0.95,
    horizon_days: float = 1,
) -> float:
    # Two trades give a single return, whose std is 0: VaR is 0, not the fallback.
    if len(trades) < 2:
        return total_value * FALLBACK_VAR_PCT
    returns = trade_returns(trades)
    if not returns:
        return total_value * FALLBACK_VAR_PCT
    std = float(np.std(returns))
    z_score = Z_SCORES.get(confidence, DEFAULT_Z_SCORE)
    return abs(total_value * (std / 100) * z_score * np.sqrt(horizon_days))


def sharpe_ratio(trades: Sequence[Trade], risk_free_rate: float = 0.02) -> float:
    if len(trades) < 2:
        return 0.0
    returns = trade_returns(trades)
    if not returns:
        return 0.0
    avg_return = float(np.mean(returns))
    annualized_std = float(np.std(returns)) * np.sqrt(TRADING_PERIODS_PER_YEAR)
    if annualized_std == 0:
        return 0.0
    annualized_return = avg_return * TRADING_PERIODS_PER_YEAR
    annualized_risk_free = risk_free_rate * TRADING_PERIODS_PER_YEAR
    return float((annualized_return - annualized_risk_free) / annualized_std)


def equity_curve(trades: Sequence[Trade], initial_balance: float) -> List[float]:
    values = [initial_balance]
    current = initial_balance
    for trade in _chronological(trades):
        notional = trade.quantity * trade.price
        if trade.side == TradeSide.BUY:
            current -= notional
        else:
            current += notional
        values.append(current)
    return values


def max_drawdown(trades: Sequence[Trade], initial_balance: float) -> DrawdownResult:
    if len(trades) < 2:
        return DrawdownResult(max_drawdown=0.0, peak=initial_balance, trough=initial_balance)
    peak = initial_balance
    trough = initial_balance
    max_dd = 0.0
    for value in equity_curve(trades, initial_balance):
        if value > peak:
            peak = value
            trough = value
        elif value < trough:
            trough = value
            if peak > 0:
                max_dd = max(max_dd, (peak - trough) / peak)
    return DrawdownResult(max_drawdown=max_dd * 100, peak=peak, trough=trough)


def _closed_pnl(trades: Sequence[Trade]) -> List[float]:
    return [
        (t.price - t.entry_price) * t.quantity
        for t in trades
        if t.side == TradeSide.SELL and t.entry_price is not None
    ]


def win_rate(trades: Sequence[Trade]) -> float:
    if not trades:
        return 0.0
    wins = [pnl for pnl in _closed_pnl(trades) if pnl > 0]
    return len(wins) / len(trades) * 100


def profit_factor(trades: Sequence[Trade]) -> float:
    pnl = _closed_pnl(trades)
    total_profit = sum(p for p in pnl if p > 0)
    total_loss = abs(sum(p for p in pnl if p < 0))
    if total_loss > 0:
        return total_profit / total_loss
    return float("inf") if total_profit > 0 else 0.0


def compute_risk_metrics(
    trades: Sequence[Trade], total_value: float, initial_balance: float
) -> RiskMetrics:
    return RiskMetrics(
        var_95=value_at_risk(trades, total_value, 0.95),
        sharpe_ratio=sharpe_ratio(trades),
        max_drawdown=max_drawdown(trades, initial_balance).max_drawdown,
        win_rate=win_rate(trades),
        profit_factor=profit_factor(trades),
    )
