"""
Fixtures compartidas para tests
"""
import pytest
from datetime import datetime
from unittest.mock import Mock

from core.domain import TradingStrategy
from core.risk import PortfolioManager, PortfolioSink

WEDNESDAY = datetime(2024, 1, 3, 12, 0, 0)
SATURDAY = datetime(2024, 1, 6, 12, 0, 0)


class RecordingSink(PortfolioSink):
    """Sink en memoria que guarda todo lo emitido por el PortfolioManager"""

    def __init__(self):
        self.snapshots = []
        self.trades = []

    def on_portfolio_snapshot(self, portfolio):
        self.snapshots.append(portfolio)

    def on_trade(self, trade):
        self.trades.append(trade)


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Mock de variables de entorno para tests"""
    env_vars = {
        'EXCHANGE_ID': 'binance',
        'EXCHANGE_API_KEY': 'test_exchange_key',
        'EXCHANGE_API_SECRET': 'test_exchange_secret',
        'TRADING_SYMBOLS': 'BTC/USDT, eth/usdt',
        'INITIAL_BALANCE': '5000',
        'STRATEGY_PRESET': 'conservative',
        'DECISION_PROVIDER': 'rules',
    }

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    return env_vars


@pytest.fixture
def make_strategy():
    """Fábrica de estrategias con valores por defecto neutros"""
    def _make(**overrides):
        values = dict(
            name="test",
            risk_per_trade=2,
            max_positions=5,
            min_confidence=0.6,
            use_trailing_stop=False,
            trailing_stop_percent=0,
            use_dca=False,
            dca_levels=0,
            use_scalping=False,
            scalping_target_percent=0,
            use_market_timing=False,
            avoid_weekends=False,
            max_leverage=10,
            diversification=True,
        )
        values.update(overrides)
        return TradingStrategy(**values)
    return _make


@pytest.fixture
def make_manager(make_strategy):
    """Fábrica de PortfolioManager con reloj fijo en día laborable"""
    def _make(initial_balance=10000.0, clock=None, sink=None, **strategy_overrides):
        return PortfolioManager(
            strategy=make_strategy(**strategy_overrides),
            initial_balance=initial_balance,
            snapshot_sink=sink,
            clock=clock or (lambda: WEDNESDAY),
        )
    return _make


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def rising_prices():
    return [100.0 + i for i in range(60)]


@pytest.fixture
def falling_prices():
    return [200.0 - i for i in range(60)]


@pytest.fixture
def mock_exchange():
    """Mock de un cliente ccxt"""
    exchange = Mock()
    exchange.fetch_tickers.return_value = {
        'BTC/USDT': {'last': 50000.0},
        'ETH/USDT': {'last': 3000.0},
    }
    exchange.fetch_ohlcv.return_value = [
        [1640003600000, 50000, 51000, 49500, 50500, 1100],
        [1640000000000, 49000, 50500, 48500, 50000, 1000],
    ]
    return exchange
