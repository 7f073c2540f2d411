from .presets import DEFAULT_STRATEGIES, get_strategy

__all__ = ["DEFAULT_STRATEGIES", "get_strategy"]
