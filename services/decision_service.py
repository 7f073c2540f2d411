"""
Proveedores de decisiones de trading.
El núcleo solo consume la forma de la decisión (BUY/SELL/HOLD + confianza);
aquí viven los transportes, reintentos y timeouts.
"""
import concurrent.futures
import time
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Any, Dict, Optional

import requests

from core.domain import Decision, DecisionAction, DecisionRequest
from utils.logger import logger
from utils.security import sanitize_exception

NO_RETRY_STATUS = (401, 403, 429)
MAX_BACKOFF_SECONDS = 10


class DecisionProviderError(Exception):
    """Error del transporte o del formato de respuesta del proveedor."""


class DecisionProvider(ABC):
    name = "provider"

    @abstractmethod
    def decide(self, request: DecisionRequest) -> Optional[Decision]:
        raise NotImplementedError


def hold_decision(symbol: str, rationale: str = "no decision available") -> Decision:
    return Decision(symbol=symbol, action=DecisionAction.HOLD, confidence=0.0, rationale=rationale)


class RuleBasedDecisionProvider(DecisionProvider):
    """Reglas locales: RSI extremo confirmado por MACD y precio vs EMA20."""

    name = "rules"

    def decide(self, request: DecisionRequest) -> Decision:
        ind = request.indicators
        price = request.price
        oversold = ind.rsi7 < 30 or ind.rsi14 < 30
        overbought = ind.rsi7 > 70 or ind.rsi14 > 70
        macd_bullish = ind.macd > 0
        macd_bearish = ind.macd < 0
        above_ema = price > ind.ema20
        below_ema = price < ind.ema20

        action = DecisionAction.HOLD
        confidence = 0.0
        rationale = ""
        stop_loss = None
        take_profit = None

        if oversold and macd_bullish and above_ema:
            action, confidence = DecisionAction.BUY, 0.85
            rationale = (
                f"Strong buy: RSI oversold ({ind.rsi7:.2f}), MACD bullish ({ind.macd:.2f}), price above EMA20"
            )
            stop_loss, take_profit = price * 0.98, price * 1.04
        elif oversold and macd_bullish:
            action, confidence = DecisionAction.BUY, 0.70
            rationale = f"Moderate buy: RSI oversold ({ind.rsi7:.2f}), MACD bullish ({ind.macd:.2f})"
            stop_loss, take_profit = price * 0.98, price * 1.03
        elif oversold and above_ema:
            action, confidence = DecisionAction.BUY, 0.60
            rationale = f"Weak buy: RSI oversold ({ind.rsi7:.2f}), price above EMA20"
            stop_loss, take_profit = price * 0.99, price * 1.02

        if overbought and macd_bearish and below_ema:
            action, confidence = DecisionAction.SELL, 0.85
            rationale = (
                f"Strong sell: RSI overbought ({ind.rsi7:.2f}), MACD bearish ({ind.macd:.2f}), price below EMA20"
            )
            stop_loss = take_profit = None
        elif overbought and macd_bearish:
            action, confidence = DecisionAction.SELL, 0.70
            rationale = f"Moderate sell: RSI overbought ({ind.rsi7:.2f}), MACD bearish ({ind.macd:.2f})"
            stop_loss = take_profit = None
        elif overbought and below_ema:
            action, confidence = DecisionAction.SELL, 0.60
            rationale = f"Weak sell: RSI overbought ({ind.rsi7:.2f}), price below EMA20"
            stop_loss = take_profit = None

        if action == DecisionAction.HOLD:
            vs_ema = (price - ind.ema20) / ind.ema20 * 100 if ind.ema20 else 0.0
            rationale = f"No clear signal: RSI={ind.rsi7:.2f}, MACD={ind.macd:.2f}, price vs EMA={vs_ema:.2f}%"
            confidence = 0.5

        return Decision(
            symbol=request.symbol,
            action=action,
            confidence=confidence,
            rationale=rationale,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )


def build_payload(request: DecisionRequest) -> Dict[str, Any]:
    """Serializa la petición al contrato JSON del proveedor externo."""
    ind = request.indicators
    return {
        "symbol": request.symbol,
        "price": request.price,
        "indicators": {
            "rsi7": ind.rsi7,
            "rsi14": ind.rsi14,
            "ema20": ind.ema20,
            "macd": ind.macd,
            "macdSignal": ind.macd_signal,
            "macdHistogram": ind.macd_histogram,
            "volatility": ind.volatility,
            "priceHistory": ind.price_history,
            "emaHistory": ind.ema_history,
            "macdHistory": ind.macd_history,
            "rsiHistory": ind.rsi_history,
            "multiTimeframe": {
                tf: {**asdict(values), "trend": values.trend.value}
                for tf, values in ind.multi_timeframe.items()
            },
            "trend": {
                "overallTrend": ind.trend.overall_trend.value,
                "strength": ind.trend.strength,
                "consensus": ind.trend.consensus,
            },
        },
        "openPositions": [asdict(p) for p in request.open_positions],
        "portfolioValue": request.portfolio_value,
        "cash": request.cash,
    }


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def parse_decision(data: Any, symbol: str) -> Decision:
    """Valida la respuesta JSON y la convierte en Decision."""
    if not isinstance(data, dict):
        raise DecisionProviderError("Respuesta del proveedor no es un objeto JSON")

    raw_action = str(data.get("decision") or data.get("action") or "HOLD").strip().upper()
    try:
        action = DecisionAction(raw_action)
    except ValueError:
        logger.warning(f"⚠️ Acción desconocida del proveedor: {raw_action}, se usa HOLD")
        action = DecisionAction.HOLD

    try:
        confidence = float(data.get("confidence", 0.0))
        stop_loss = _optional_float(data.get("stopLoss"))
        take_profit = _optional_float(data.get("takeProfit"))
    except (TypeError, ValueError) as e:
        raise DecisionProviderError(f"Campos numéricos inválidos en la respuesta: {e}") from e

    return Decision(
        symbol=symbol,
        action=action,
        confidence=min(1.0, max(0.0, confidence)),
        rationale=str(data.get("reasoning") or data.get("rationale") or ""),
        stop_loss=stop_loss,
        take_profit=take_profit,
    )


class HttpDecisionProvider(DecisionProvider):
    """Proveedor externo que responde JSON con la forma de una decisión."""

    name = "http"

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        session: Optional[requests.Session] = None,
        sleep=time.sleep,
    ) -> None:
        if not url:
            raise ValueError("url es obligatorio")
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.session = session or requests.Session()
        self._sleep = sleep

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def decide(self, request: DecisionRequest) -> Decision:
        payload = build_payload(request)
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            if attempt > 0:
                # Backoff exponencial entre reintentos
                self._sleep(min(2 ** attempt, MAX_BACKOFF_SECONDS))
            try:
                response = self.session.post(
                    self.url, json=payload, headers=self._headers(), timeout=self.timeout
                )
                if response.status_code in NO_RETRY_STATUS:
                    raise DecisionProviderError(
                        f"Proveedor rechazó la petición (HTTP {response.status_code})"
                    )
                response.raise_for_status()
                try:
                    data = response.json()
                except ValueError as e:
                    raise DecisionProviderError("Respuesta del proveedor no es JSON") from e
                return parse_decision(data, request.symbol)
            except requests.RequestException as e:
                last_error = e
                logger.warning(
                    f"⚠️ Proveedor de decisiones falló (intento {attempt + 1}/{self.max_retries}): "
                    f"{sanitize_exception(e)}"
                )

        raise DecisionProviderError("Proveedor de decisiones no disponible") from last_error


def resolve_decision(
    provider: DecisionProvider,
    request: DecisionRequest,
    timeout_seconds: float = 30.0,
    executor: Optional[concurrent.futures.Executor] = None,
) -> Decision:
    """
    Obtiene una decisión sin propagar fallos del proveedor.

    Timeout, excepción o respuesta vacía equivalen a HOLD con confianza 0.

    Args:
        executor: Pool compartido del llamador; si es None se crea uno
            temporal que se cierra al terminar
    """
    owns_executor = executor is None
    if owns_executor:
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(provider.decide, request)
        decision = future.result(timeout=timeout_seconds)
    except concurrent.futures.TimeoutError:
        future.cancel()
        logger.warning(f"⏱️ Timeout del proveedor {provider.name} para {request.symbol}")
        return hold_decision(request.symbol, "decision provider timed out")
    except Exception as e:
        logger.error(f"❌ Proveedor {provider.name} falló para {request.symbol}: {sanitize_exception(e)}")
        return hold_decision(request.symbol, "decision provider failed")
    finally:
        if owns_executor:
            # No esperar al hilo si el proveedor quedó colgado
            executor.shutdown(wait=False)

    if decision is None:
        return hold_decision(request.symbol)
    if decision.symbol != request.symbol:
        logger.warning(f"⚠️ Decisión para {decision.symbol} ignorada, se esperaba {request.symbol}")
        return hold_decision(request.symbol, "decision for another symbol")
    return decision
