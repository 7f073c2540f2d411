"""
Orquestador del bot de trading.
Un ciclo: precios -> marcar posiciones -> indicadores -> decisión -> trade -> snapshot.
Garantiza que solo corra un ciclo a la vez por instancia (lock + cooldown).
"""
import concurrent.futures
import threading
import time
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional, Tuple

from config.config import Config
from core.domain import Decision, DecisionAction, DecisionRequest, Trade
from core.indicators import indicator_snapshot
from core.risk import PortfolioManager
from database.db_manager import DatabaseManager
from services.decision_service import DecisionProvider, resolve_decision
from services.market_data_service import MarketDataError, MarketDataService, timeframe_minutes
from utils.logger import logger
from utils.security import sanitize_exception

# Un proveedor colgado ocupa un worker; el otro atiende el siguiente símbolo
DECISION_WORKERS = 2


class TradingBotOrchestrator:
    """Coordina feed de precios, proveedor de decisiones y PortfolioManager"""

    class _PerfCtx:
        """Context manager auxiliar para medir tiempos de ejecución"""
        def __init__(self, end_fn):
            self._end = end_fn
        def __enter__(self):
            return self
        def __exit__(self, *args):
            self._end()

    class PerformanceTracker:
        """Context manager para medir tiempos de pasos"""
        def __init__(self):
            self._steps: List[Tuple[str, float]] = []
        def step(self, name: str):
            start = time.time()
            def _end():
                elapsed = time.time() - start
                self._steps.append((name, elapsed))
            return TradingBotOrchestrator._PerfCtx(_end)
        def summary(self) -> List[Tuple[str, float]]:
            return sorted(self._steps, key=lambda x: x[1], reverse=True)

    def __init__(
        self,
        portfolio_manager: PortfolioManager,
        market_data: MarketDataService,
        decision_provider: DecisionProvider,
        store: Optional[DatabaseManager] = None,
        symbols: Optional[List[str]] = None,
        timeframe: Optional[str] = None,
        history_limit: Optional[int] = None,
        min_history_points: Optional[int] = None,
        cooldown_seconds: Optional[float] = None,
        decision_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.portfolio_manager = portfolio_manager
        self.market_data = market_data
        self.decision_provider = decision_provider
        self.store = store
        self.symbols = symbols if symbols is not None else list(Config.TRADING_SYMBOLS)
        self.timeframe = timeframe or Config.PRICE_HISTORY_TIMEFRAME
        self.history_limit = history_limit or Config.PRICE_HISTORY_LIMIT
        self.min_history_points = (
            Config.MIN_HISTORY_POINTS if min_history_points is None else min_history_points
        )
        self.cooldown_seconds = Config.CYCLE_COOLDOWN_SECONDS if cooldown_seconds is None else cooldown_seconds
        self.decision_timeout = decision_timeout or Config.DECISION_TIMEOUT_SECONDS
        self._clock = clock
        self._cycle_lock = threading.Lock()
        self._last_cycle_at: Optional[float] = None
        self._interval_minutes = timeframe_minutes(self.timeframe)
        # Pool reutilizado entre ciclos para las llamadas al proveedor de decisiones
        self._decision_executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=DECISION_WORKERS, thread_name_prefix="decision"
        )

    def run_cycle(self) -> bool:
        """
        Ejecuta un ciclo de análisis y trading.

        Returns:
            False si otro ciclo está en curso o aún corre el cooldown.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("⏳ Ciclo anterior aún en ejecución, se omite")
            return False
        try:
            now = self._clock()
            if self._last_cycle_at is not None and now - self._last_cycle_at < self.cooldown_seconds:
                remaining = self.cooldown_seconds - (now - self._last_cycle_at)
                logger.info(f"🧊 Cooldown activo, faltan {remaining:.1f}s")
                return False
            self._last_cycle_at = now
            self._run_cycle_unlocked()
            return True
        finally:
            self._cycle_lock.release()

    def _run_cycle_unlocked(self) -> None:
        perf = self.PerformanceTracker()
        logger.info("=" * 60)
        logger.info(f"🔄 Ciclo de trading: {', '.join(self.symbols)}")

        with perf.step("prices"):
            try:
                prices = self.market_data.get_prices(self.symbols)
            except MarketDataError as e:
                logger.error(f"❌ No se pudieron obtener precios, ciclo omitido: {sanitize_exception(e)}")
                return

        self.portfolio_manager.update_positions(prices)

        trades: List[Trade] = []
        for symbol in self.symbols:
            price = prices.get(symbol)
            if not price:
                logger.warning(f"⚠️ Sin precio para {symbol}, se omite")
                continue
            with perf.step(symbol):
                try:
                    trade = self._process_symbol(symbol, price)
                except MarketDataError as e:
                    logger.error(f"❌ Histórico no disponible para {symbol}: {sanitize_exception(e)}")
                    continue
            if trade:
                trades.append(trade)

        # Totales frescos después de los trades del ciclo
        self.portfolio_manager.update_positions(prices)

        portfolio = self.portfolio_manager.get_portfolio()
        logger.info(
            f"💼 Valor total {portfolio.total_value:.2f} | Cash {portfolio.cash:.2f} | "
            f"Retorno {portfolio.total_return:.2f}% | Trades del ciclo: {len(trades)}"
        )
        for name, elapsed in perf.summary():
            logger.debug(f"   ⏱️ {name}: {elapsed:.3f}s")

    def _process_symbol(self, symbol: str, price: float) -> Optional[Trade]:
        history = self.market_data.get_price_history(symbol, timeframe=self.timeframe, limit=self.history_limit)
        if len(history) < self.min_history_points:
            logger.info(f"ℹ️ {symbol}: histórico insuficiente ({len(history)}/{self.min_history_points})")
            return None

        indicators = indicator_snapshot(history, self._interval_minutes)
        portfolio = self.portfolio_manager.get_portfolio()
        request = DecisionRequest(
            symbol=symbol,
            price=price,
            indicators=indicators,
            open_positions=portfolio.positions,
            portfolio_value=portfolio.total_value,
            cash=portfolio.cash,
        )
        decision = resolve_decision(
            self.decision_provider, request, self.decision_timeout, executor=self._decision_executor
        )
        logger.info(f"🤖 {symbol}: {decision.action.value} ({decision.confidence:.2f}) - {decision.rationale}")
        self._save_decision(symbol, decision, price)

        if not self._is_actionable(decision):
            return None

        if decision.action == DecisionAction.BUY:
            quantity = self.portfolio_manager.calculate_position_size(decision, price)
            return self.portfolio_manager.execute_trade(decision, price, quantity)

        position = next((p for p in portfolio.positions if p.symbol == symbol), None)
        if position is None:
            logger.debug(f"{symbol}: SELL sin posición abierta, se ignora")
            return None
        return self.portfolio_manager.execute_trade(decision, price, position.quantity)

    def _is_actionable(self, decision: Decision) -> bool:
        if decision.action == DecisionAction.HOLD:
            return False
        return decision.confidence >= self.portfolio_manager.get_strategy().min_confidence

    def _save_decision(self, symbol: str, decision: Decision, price: float) -> None:
        if self.store is None:
            return
        try:
            self.store.save_decision(symbol, decision, price)
        except Exception as e:
            logger.error(f"❌ No se pudo guardar la decisión de {symbol}: {sanitize_exception(e)}")

    def get_report(self) -> Dict[str, Any]:
        """Resumen del portafolio y métricas de riesgo para superficies de reporte"""
        portfolio = self.portfolio_manager.get_portfolio()
        metrics = self.portfolio_manager.get_risk_metrics()
        return {
            "cash": portfolio.cash,
            "total_value": portfolio.total_value,
            "total_return": portfolio.total_return,
            "open_positions": [asdict(p) for p in portfolio.positions],
            "trades": len(portfolio.trades),
            "risk_metrics": asdict(metrics),
        }

    def close(self) -> None:
        """Libera el pool del proveedor sin esperar a llamadas colgadas"""
        self._decision_executor.shutdown(wait=False, cancel_futures=True)
