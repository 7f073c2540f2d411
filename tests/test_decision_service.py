import concurrent.futures
import threading
from unittest.mock import Mock

import pytest
import requests

from core.domain import (
    Decision,
    DecisionAction,
    DecisionRequest,
    IndicatorSnapshot,
    Trend,
    TrendSummary,
)
from services.decision_service import (
    DecisionProvider,
    DecisionProviderError,
    HttpDecisionProvider,
    RuleBasedDecisionProvider,
    build_payload,
    parse_decision,
    resolve_decision,
)


def _request(symbol="BTC/USDT", price=100.0, rsi7=50.0, rsi14=50.0, ema20=100.0, macd=0.0):
    indicators = IndicatorSnapshot(
        rsi7=rsi7,
        rsi14=rsi14,
        ema20=ema20,
        macd=macd,
        macd_signal=macd * 0.9,
        macd_histogram=macd * 0.1,
        volatility=0.01,
        price_history=[99.0, 100.0],
        ema_history=[0.0, 0.0],
        macd_history=[0.0, 0.0],
        rsi_history=[0.0, 0.0],
        multi_timeframe={},
        trend=TrendSummary(overall_trend=Trend.SIDEWAYS, strength=0.0, consensus=0.0),
    )
    return DecisionRequest(
        symbol=symbol,
        price=price,
        indicators=indicators,
        open_positions=[],
        portfolio_value=10000.0,
        cash=10000.0,
    )


def _response(status=200, payload=None, json_error=False):
    response = Mock()
    response.status_code = status
    if json_error:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"HTTP {status}")
    return response


class TestRuleBasedProvider:

    def test_strong_buy(self):
        decision = RuleBasedDecisionProvider().decide(_request(price=101, rsi7=25, ema20=100, macd=1))
        assert decision.action == DecisionAction.BUY
        assert decision.confidence == 0.85
        assert decision.stop_loss == pytest.approx(101 * 0.98)
        assert decision.take_profit == pytest.approx(101 * 1.04)

    def test_moderate_and_weak_buy(self):
        provider = RuleBasedDecisionProvider()
        moderate = provider.decide(_request(price=99, rsi7=25, ema20=100, macd=1))
        weak = provider.decide(_request(price=101, rsi14=20, ema20=100, macd=-1))
        assert (moderate.action, moderate.confidence) == (DecisionAction.BUY, 0.70)
        assert (weak.action, weak.confidence) == (DecisionAction.BUY, 0.60)
        assert weak.take_profit == pytest.approx(101 * 1.02)

    def test_strong_sell_clears_levels(self):
        decision = RuleBasedDecisionProvider().decide(_request(price=99, rsi7=80, ema20=100, macd=-1))
        assert decision.action == DecisionAction.SELL
        assert decision.confidence == 0.85
        assert decision.stop_loss is None
        assert decision.take_profit is None

    def test_sell_overrides_buy_when_both_fire(self):
        decision = RuleBasedDecisionProvider().decide(
            _request(price=101, rsi7=25, rsi14=75, ema20=100, macd=-1)
        )
        assert decision.action == DecisionAction.SELL
        assert decision.confidence == 0.70

    def test_no_signal_is_hold(self):
        decision = RuleBasedDecisionProvider().decide(_request())
        assert decision.action == DecisionAction.HOLD
        assert decision.confidence == 0.5
        assert "No clear signal" in decision.rationale


class TestParseDecision:

    def test_parses_full_response(self):
        decision = parse_decision(
            {"decision": "buy", "confidence": 0.8, "reasoning": "ok", "stopLoss": "95", "takeProfit": 110},
            "BTC/USDT",
        )
        assert decision == Decision("BTC/USDT", DecisionAction.BUY, 0.8, "ok", 95.0, 110.0)

    def test_unknown_action_becomes_hold(self):
        decision = parse_decision({"action": "SHORT", "confidence": 0.9}, "BTC/USDT")
        assert decision.action == DecisionAction.HOLD

    def test_confidence_is_clamped(self):
        assert parse_decision({"decision": "BUY", "confidence": 3}, "X").confidence == 1.0
        assert parse_decision({"decision": "BUY", "confidence": -1}, "X").confidence == 0.0

    def test_invalid_payloads_raise(self):
        with pytest.raises(DecisionProviderError):
            parse_decision(["BUY"], "X")
        with pytest.raises(DecisionProviderError):
            parse_decision({"decision": "BUY", "confidence": "high"}, "X")


def test_build_payload_uses_wire_names():
    payload = build_payload(_request(rsi7=25))
    assert payload["symbol"] == "BTC/USDT"
    assert payload["indicators"]["rsi7"] == 25
    assert payload["indicators"]["trend"]["overallTrend"] == "sideways"
    assert payload["openPositions"] == []
    assert payload["portfolioValue"] == 10000.0


class TestHttpProvider:

    def _provider(self, session, max_retries=3):
        sleeps = []
        provider = HttpDecisionProvider(
            url="https://decisions.test/decide",
            api_key="secret-key",
            timeout=5,
            max_retries=max_retries,
            session=session,
            sleep=sleeps.append,
        )
        return provider, sleeps

    def test_successful_call_sends_bearer_token(self):
        session = Mock()
        session.post.return_value = _response(payload={"decision": "SELL", "confidence": 0.7})
        provider, sleeps = self._provider(session)

        decision = provider.decide(_request())

        assert decision.action == DecisionAction.SELL
        _, kwargs = session.post.call_args
        assert kwargs["headers"]["Authorization"] == "Bearer secret-key"
        assert kwargs["timeout"] == 5
        assert sleeps == []

    def test_retries_with_backoff_then_succeeds(self):
        session = Mock()
        session.post.side_effect = [
            requests.ConnectionError("down"),
            _response(status=500),
            _response(payload={"decision": "BUY", "confidence": 0.9}),
        ]
        provider, sleeps = self._provider(session)

        decision = provider.decide(_request())

        assert decision.action == DecisionAction.BUY
        assert sleeps == [2, 4]

    def test_gives_up_after_max_retries(self):
        session = Mock()
        session.post.side_effect = requests.Timeout("slow")
        provider, _ = self._provider(session, max_retries=2)

        with pytest.raises(DecisionProviderError):
            provider.decide(_request())
        assert session.post.call_count == 2

    @pytest.mark.parametrize("status", [401, 403, 429])
    def test_auth_and_rate_limit_are_not_retried(self, status):
        session = Mock()
        session.post.return_value = _response(status=status)
        provider, _ = self._provider(session)

        with pytest.raises(DecisionProviderError):
            provider.decide(_request())
        assert session.post.call_count == 1

    def test_non_json_body_raises(self):
        session = Mock()
        session.post.return_value = _response(json_error=True)
        provider, _ = self._provider(session)

        with pytest.raises(DecisionProviderError):
            provider.decide(_request())

    def test_requires_url(self):
        with pytest.raises(ValueError):
            HttpDecisionProvider(url="")


class TestResolveDecision:

    def test_passes_decision_through(self):
        decision = resolve_decision(RuleBasedDecisionProvider(), _request())
        assert decision.action == DecisionAction.HOLD
        assert decision.confidence == 0.5

    def test_provider_error_becomes_hold(self):
        provider = Mock(spec=DecisionProvider)
        provider.name = "mock"
        provider.decide.side_effect = DecisionProviderError("boom")
        decision = resolve_decision(provider, _request())
        assert decision.action == DecisionAction.HOLD
        assert decision.confidence == 0.0

    def test_none_becomes_hold(self):
        provider = Mock(spec=DecisionProvider)
        provider.name = "mock"
        provider.decide.return_value = None
        assert resolve_decision(provider, _request()).action == DecisionAction.HOLD

    def test_wrong_symbol_becomes_hold(self):
        provider = Mock(spec=DecisionProvider)
        provider.name = "mock"
        provider.decide.return_value = Decision("ETH/USDT", DecisionAction.BUY, 0.9)
        decision = resolve_decision(provider, _request("BTC/USDT"))
        assert decision.symbol == "BTC/USDT"
        assert decision.action == DecisionAction.HOLD

    def test_timeout_becomes_hold(self):
        release = threading.Event()

        class SlowProvider(DecisionProvider):
            name = "slow"

            def decide(self, request):
                release.wait(5)
                return Decision(request.symbol, DecisionAction.BUY, 0.9)

        try:
            decision = resolve_decision(SlowProvider(), _request(), timeout_seconds=0.05)
        finally:
            release.set()
        assert decision.action == DecisionAction.HOLD
        assert decision.confidence == 0.0

    def test_shared_executor_stays_open(self):
        provider = RuleBasedDecisionProvider()
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
            first = resolve_decision(provider, _request(), executor=executor)
            second = resolve_decision(provider, _request("ETH/USDT"), executor=executor)
            assert executor.submit(lambda: 42).result(timeout=5) == 42
        assert first.symbol == "BTC/USDT"
        assert second.symbol == "ETH/USDT"
