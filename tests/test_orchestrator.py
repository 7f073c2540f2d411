import threading
from unittest.mock import Mock

import pytest

from bot_orchestrator import TradingBotOrchestrator
from core.domain import Decision, DecisionAction
from services.decision_service import DecisionProvider
from services.market_data_service import MarketDataError


class FakeMarketData:

    def __init__(self, prices, history=None, failing_symbols=()):
        self.prices = prices
        self.history = history if history is not None else [100.0 + i for i in range(60)]
        self.failing_symbols = set(failing_symbols)
        self.history_calls = []

    def get_prices(self, symbols):
        if isinstance(self.prices, Exception):
            raise self.prices
        return {s: p for s, p in self.prices.items() if s in symbols}

    def get_price_history(self, symbol, timeframe="1h", limit=500):
        self.history_calls.append(symbol)
        if symbol in self.failing_symbols:
            raise MarketDataError("history unavailable")
        return list(self.history)


class ScriptedProvider(DecisionProvider):
    name = "scripted"

    def __init__(self, decisions):
        self.decisions = decisions
        self.requests = []

    def decide(self, request):
        self.requests.append(request)
        action, confidence = self.decisions.get(request.symbol, (DecisionAction.HOLD, 0.5))
        return Decision(request.symbol, action, confidence, "scripted")


class Clock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def build(make_manager):
    def _build(market_data, provider, store=None, symbols=("BTC/USDT",), clock=None, **strategy):
        manager = make_manager(**strategy)
        bot = TradingBotOrchestrator(
            portfolio_manager=manager,
            market_data=market_data,
            decision_provider=provider,
            store=store,
            symbols=list(symbols),
            timeframe="1h",
            history_limit=100,
            min_history_points=50,
            cooldown_seconds=60,
            decision_timeout=5,
            clock=clock or Clock(),
        )
        return bot, manager
    return _build


def test_buy_decision_is_sized_and_executed(build):
    store = Mock()
    provider = ScriptedProvider({"BTC/USDT": (DecisionAction.BUY, 0.9)})
    bot, manager = build(FakeMarketData({"BTC/USDT": 100.0}), provider, store=store)

    assert bot.run_cycle() is True

    portfolio = manager.get_portfolio()
    assert len(portfolio.positions) == 1
    assert portfolio.positions[0].quantity == 2.0
    assert portfolio.cash == pytest.approx(9800.0)
    assert portfolio.total_value == pytest.approx(10000.0)
    store.save_decision.assert_called_once()
    request = provider.requests[0]
    assert request.price == 100.0
    assert len(request.indicators.price_history) == 60


def test_low_confidence_decision_is_ignored(build):
    provider = ScriptedProvider({"BTC/USDT": (DecisionAction.BUY, 0.5)})
    bot, manager = build(FakeMarketData({"BTC/USDT": 100.0}), provider, min_confidence=0.6)

    bot.run_cycle()

    assert manager.get_portfolio().trades == []


def test_sell_decision_closes_whole_position(build):
    provider = ScriptedProvider({"BTC/USDT": (DecisionAction.SELL, 0.9)})
    bot, manager = build(FakeMarketData({"BTC/USDT": 110.0}), provider)
    manager.execute_trade(Decision("BTC/USDT", DecisionAction.BUY, 0.9), 100, 3)

    bot.run_cycle()

    portfolio = manager.get_portfolio()
    assert portfolio.positions == []
    assert portfolio.trades[0].quantity == 3
    assert portfolio.cash == pytest.approx(10000 + 30)


def test_short_history_skips_decision(build):
    provider = ScriptedProvider({"BTC/USDT": (DecisionAction.BUY, 0.9)})
    bot, manager = build(FakeMarketData({"BTC/USDT": 100.0}, history=[100.0] * 10), provider)

    bot.run_cycle()

    assert provider.requests == []
    assert manager.get_portfolio().trades == []


def test_price_feed_failure_skips_cycle(build):
    provider = ScriptedProvider({})
    bot, manager = build(FakeMarketData(MarketDataError("exchange down")), provider)

    assert bot.run_cycle() is True
    assert provider.requests == []


def test_history_failure_only_skips_that_symbol(build):
    provider = ScriptedProvider({"ETH/USDT": (DecisionAction.BUY, 0.9)})
    market_data = FakeMarketData(
        {"BTC/USDT": 100.0, "ETH/USDT": 50.0}, failing_symbols={"BTC/USDT"}
    )
    bot, manager = build(market_data, provider, symbols=("BTC/USDT", "ETH/USDT"))

    bot.run_cycle()

    assert [p.symbol for p in manager.get_portfolio().positions] == ["ETH/USDT"]


def test_symbol_without_price_is_skipped(build):
    provider = ScriptedProvider({})
    market_data = FakeMarketData({"BTC/USDT": 100.0})
    bot, _ = build(market_data, provider, symbols=("BTC/USDT", "DOGE/USDT"))

    bot.run_cycle()

    assert market_data.history_calls == ["BTC/USDT"]


def test_store_failure_does_not_stop_cycle(build):
    store = Mock()
    store.save_decision.side_effect = RuntimeError("db locked")
    provider = ScriptedProvider({"BTC/USDT": (DecisionAction.BUY, 0.9)})
    bot, manager = build(FakeMarketData({"BTC/USDT": 100.0}), provider, store=store)

    bot.run_cycle()

    assert len(manager.get_portfolio().positions) == 1


def test_cooldown_between_cycles(build):
    clock = Clock()
    bot, _ = build(FakeMarketData({"BTC/USDT": 100.0}), ScriptedProvider({}), clock=clock)

    assert bot.run_cycle() is True
    clock.now += 30
    assert bot.run_cycle() is False
    clock.now += 31
    assert bot.run_cycle() is True


def test_overlapping_cycle_is_skipped(build):
    entered = threading.Event()
    release = threading.Event()

    class BlockingProvider(DecisionProvider):
        name = "blocking"

        def decide(self, request):
            entered.set()
            release.wait(5)
            return Decision(request.symbol, DecisionAction.HOLD, 0.5)

    bot, _ = build(FakeMarketData({"BTC/USDT": 100.0}), BlockingProvider())
    worker = threading.Thread(target=bot.run_cycle)
    worker.start()
    try:
        assert entered.wait(5)
        assert bot.run_cycle() is False
    finally:
        release.set()
        worker.join(5)


def test_report(build):
    provider = ScriptedProvider({"BTC/USDT": (DecisionAction.BUY, 0.9)})
    bot, _ = build(FakeMarketData({"BTC/USDT": 100.0}), provider)
    bot.run_cycle()

    report = bot.get_report()

    assert report["trades"] == 1
    assert report["open_positions"][0]["symbol"] == "BTC/USDT"
    assert set(report["risk_metrics"]) == {
        "var_95", "sharpe_ratio", "max_drawdown", "win_rate", "profit_factor"
    }


def test_decision_pool_is_reused_across_cycles(build):
    clock = Clock()
    provider = ScriptedProvider({})
    bot, _ = build(FakeMarketData({"BTC/USDT": 100.0}), provider, clock=clock)

    bot.run_cycle()
    clock.now += 61
    bot.run_cycle()
    assert len(provider.requests) == 2

    bot.close()
    with pytest.raises(RuntimeError):
        bot._decision_executor.submit(lambda: None)
