import math
from typing import Dict, List, Sequence, Tuple

from core.domain import (
    IndicatorSnapshot,
    MultiTimeframeIndicatorSet,
    TimeframeIndicators,
    Trend,
    TrendSummary,
)

TIMEFRAME_MINUTES: Dict[str, int] = {
    "1m": 1,
    "5m": 5,
    "15m": 15,
    "1h": 60,
    "4h": 240,
    "1d": 1440,
}

MULTI_TIMEFRAMES: Tuple[str, ...] = ("5m", "15m", "1h", "4h", "1d")
MIN_TIMEFRAME_POINTS = 50


def sma(values: Sequence[float], period: int) -> float:
    """Mean of the last ``period`` values, or of everything when the series is shorter."""
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")
    if not values:
        return 0.0
    window = values[-period:]
    return sum(window) / len(window)


def ema(values: Sequence[float], period: int) -> float:
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")
    if not values:
        return 0.0
    if len(values) < period:
        return sma(values, len(values))
    k = 2 / (period + 1)
    current = sma(values[:period], period)
    for price in values[period:]:
        current = (price - current) * k + current
    return current


def rsi(values: Sequence[float], period: int = 14) -> float:
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")
    if len(values) < period + 1:
        return 50.0
    gains = []
    losses = []
    for i in range(1, len(values)):
        delta = values[i] - values[i - 1]
        gains.append(max(delta, 0.0))
        losses.append(max(-delta, 0.0))
    avg_gain = sma(gains[-period:], period)
    avg_loss = sma(losses[-period:], period)
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - (100 / (1 + rs))


def macd(values: Sequence[float], fast: int = 12, slow: int = 26) -> Tuple[float, float, float]:
    # No MACD history is kept, the signal line is a fixed fraction of the line.
    macd_line = ema(values, fast) - ema(values, slow)
    signal_line = macd_line * 0.9
    return macd_line, signal_line, macd_line - signal_line


def percent_returns(values: Sequence[float]) -> List[float]:
    returns = []
    for i in range(1, len(values)):
        previous = values[i - 1]
        returns.append((values[i] - previous) / previous if previous else 0.0)
    return returns


def volatility(values: Sequence[float], period: int = 20) -> float:
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")
    if len(values) < period + 1:
        return 0.0
    recent = percent_returns(values)[-period:]
    mean = sum(recent) / len(recent)
    variance = sum((r - mean) ** 2 for r in recent) / len(recent)
    return variance ** 0.5


def resample(values: Sequence[float], original_interval_minutes: int, timeframe: str) -> List[float]:
    """Average consecutive chunks of a fine series into ``timeframe`` buckets.

    The last bucket may hold fewer samples than the others; it is averaged over
    what it has.
    """
    if timeframe not in TIMEFRAME_MINUTES:
        raise ValueError(f"unknown timeframe: {timeframe}")
    if original_interval_minutes <= 0:
        raise ValueError(f"interval must be positive, got {original_interval_minutes}")
    compression = math.floor(TIMEFRAME_MINUTES[timeframe] / original_interval_minutes)
    if compression <= 1:
        return list(values)
    resampled = []
    for i in range(0, len(values), compression):
        chunk = values[i:i + compression]
        resampled.append(sum(chunk) / len(chunk))
    return resampled


def classify_trend(last_price: float, ema20: float, ema50: float) -> Trend:
    if ema20 > ema50 and last_price > ema20:
        return Trend.BULLISH
    if ema20 < ema50 and last_price < ema20:
        return Trend.BEARISH
    return Trend.SIDEWAYS


def trend_strength(values: Sequence[float]) -> float:
    first = values[0]
    price_change = (values[-1] - first) / first if first else 0.0
    vol = volatility(values)
    if vol == 0:
        return 100.0 if price_change else 0.0
    return min(100.0, abs(price_change) / vol * 50)


def timeframe_indicators(values: Sequence[float]) -> TimeframeIndicators:
    ema20 = ema(values, 20)
    ema50 = ema(values, 50)
    macd_line, signal_line, histogram = macd(values)
    return TimeframeIndicators(
        rsi7=rsi(values, 7),
        rsi14=rsi(values, 14),
        ema20=ema20,
        ema50=ema50,
        macd=macd_line,
        macd_signal=signal_line,
        macd_histogram=histogram,
        trend=classify_trend(values[-1], ema20, ema50),
        strength=trend_strength(values),
    )


def multi_timeframe_indicators(
    values: Sequence[float], original_interval_minutes: int = 1
) -> MultiTimeframeIndicatorSet:
    result: MultiTimeframeIndicatorSet = {}
    for timeframe in MULTI_TIMEFRAMES:
        resampled = resample(values, original_interval_minutes, timeframe)
        if len(resampled) < MIN_TIMEFRAME_POINTS:
            continue
        result[timeframe] = timeframe_indicators(resampled)
    return result


def trend_consensus(indicator_set: MultiTimeframeIndicatorSet) -> TrendSummary:
    frames = list(indicator_set.values())
    if not frames:
        return TrendSummary(overall_trend=Trend.SIDEWAYS, strength=0.0, consensus=0.0)
    bullish = sum(1 for tf in frames if tf.trend == Trend.BULLISH)
    bearish = sum(1 for tf in frames if tf.trend == Trend.BEARISH)
    total = len(frames)
    if bullish > bearish:
        overall = Trend.BULLISH
    elif bearish > bullish:
        overall = Trend.BEARISH
    else:
        overall = Trend.SIDEWAYS
    return TrendSummary(
        overall_trend=overall,
        strength=sum(tf.strength for tf in frames) / total,
        consensus=max(bullish, bearish) / total * 100,
    )


def indicator_snapshot(values: Sequence[float], original_interval_minutes: int = 60) -> IndicatorSnapshot:
    """Bundle the indicators handed to a decision provider for one symbol.

    Histories are aligned with ``values``; slots before an indicator has
    enough samples hold 0.
    """
    closes = list(values)
    macd_line, signal_line, histogram = macd(closes)
    ema_history = [ema(closes[:i + 1], 20) if i >= 19 else 0.0 for i in range(len(closes))]
    macd_history = [macd(closes[:i + 1])[0] if i >= 25 else 0.0 for i in range(len(closes))]
    rsi_history = [rsi(closes[:i + 1], 7) if i >= 6 else 0.0 for i in range(len(closes))]
    multi = multi_timeframe_indicators(closes, original_interval_minutes)
    return IndicatorSnapshot(
        rsi7=rsi(closes, 7),
        rsi14=rsi(closes, 14),
        ema20=ema(closes, 20),
        macd=macd_line,
        macd_signal=signal_line,
        macd_histogram=histogram,
        volatility=volatility(closes),
        price_history=closes,
        ema_history=ema_history,
        macd_history=macd_history,
        rsi_history=rsi_history,
        multi_timeframe=multi,
        trend=trend_consensus(multi),
    )
