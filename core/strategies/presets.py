from typing import Dict

from core.domain import TradingStrategy


DEFAULT_STRATEGIES: Dict[str, TradingStrategy] = {
    "conservative": TradingStrategy(
        name="Conservative",
        risk_per_trade=1,
        max_positions=3,
        min_confidence=0.75,
        use_trailing_stop=True,
        trailing_stop_percent=2,
        use_dca=False,
        dca_levels=0,
        use_scalping=False,
        scalping_target_percent=0,
        use_market_timing=True,
        avoid_weekends=True,
        max_leverage=5,
        diversification=True,
    ),
    "moderate": TradingStrategy(
        name="Moderate",
        risk_per_trade=2,
        max_positions=5,
        min_confidence=0.65,
        use_trailing_stop=True,
        trailing_stop_percent=3,
        use_dca=True,
        dca_levels=2,
        use_scalping=False,
        scalping_target_percent=0,
        use_market_timing=True,
        avoid_weekends=False,
        max_leverage=10,
        diversification=True,
    ),
    "aggressive": TradingStrategy(
        name="Aggressive",
        risk_per_trade=3,
        max_positions=8,
        min_confidence=0.60,
        use_trailing_stop=True,
        trailing_stop_percent=4,
        use_dca=True,
        dca_levels=3,
        use_scalping=True,
        scalping_target_percent=1.5,
        use_market_timing=False,
        avoid_weekends=False,
        max_leverage=20,
        diversification=False,
    ),
    "scalper": TradingStrategy(
        name="Scalper",
        risk_per_trade=1.5,
        max_positions=10,
        min_confidence=0.70,
        use_trailing_stop=False,
        trailing_stop_percent=0,
        use_dca=False,
        dca_levels=0,
        use_scalping=True,
        scalping_target_percent=0.8,
        use_market_timing=False,
        avoid_weekends=False,
        max_leverage=15,
        diversification=False,
    ),
}


def get_strategy(name: str) -> TradingStrategy:
    key = name.strip().lower()
    if key not in DEFAULT_STRATEGIES:
        raise KeyError(f"unknown strategy preset: {name}")
    return DEFAULT_STRATEGIES[key]
