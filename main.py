"""
Script principal del bot de trading.
Construye los componentes desde Config y ejecuta el ciclo una vez o de forma programada.
"""
import argparse
import json
import sys
import time
from datetime import datetime
from typing import List, Optional

import schedule

from bot_orchestrator import TradingBotOrchestrator
from config.config import Config
from core.risk import PortfolioManager
from core.strategies import get_strategy
from database.db_manager import DatabaseManager
from services.decision_service import DecisionProvider, HttpDecisionProvider, RuleBasedDecisionProvider
from services.market_data_service import MarketDataService
from utils.logger import logger
from utils.security import get_redactor


def build_decision_provider() -> DecisionProvider:
    if Config.DECISION_PROVIDER == 'http':
        return HttpDecisionProvider(
            url=Config.DECISION_PROVIDER_URL,
            api_key=Config.DECISION_PROVIDER_API_KEY,
            timeout=Config.DECISION_TIMEOUT_SECONDS,
            max_retries=Config.DECISION_MAX_RETRIES,
        )
    return RuleBasedDecisionProvider()


def build_orchestrator(strategy_name: Optional[str] = None, balance: Optional[float] = None) -> TradingBotOrchestrator:
    """Crea una sesión de trading nueva con su propio PortfolioManager"""
    store = DatabaseManager(Config.DB_PATH)
    portfolio_manager = PortfolioManager(
        strategy=get_strategy(strategy_name or Config.STRATEGY_PRESET),
        initial_balance=balance or Config.INITIAL_BALANCE,
        snapshot_sink=store,
    )
    return TradingBotOrchestrator(
        portfolio_manager=portfolio_manager,
        market_data=MarketDataService(),
        decision_provider=build_decision_provider(),
        store=store,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bot de trading con gestión de riesgo")
    parser.add_argument("--once", action="store_true", help="Ejecuta un solo ciclo y muestra el reporte")
    parser.add_argument("--strategy", help="Preset de estrategia (conservative, moderate, aggressive, scalper)")
    parser.add_argument("--balance", type=float, help="Balance inicial de la sesión")
    return parser


def setup_scheduler(bot: TradingBotOrchestrator) -> None:
    """Configura el programador de tareas"""
    schedule.every(Config.ANALYSIS_INTERVAL_MINUTES).minutes.do(bot.run_cycle)
    logger.info(f"✅ Ciclo programado cada {Config.ANALYSIS_INTERVAL_MINUTES} minuto(s)")
    for job in schedule.get_jobs():
        logger.info(f"   - {job}")


def main(argv: Optional[List[str]] = None) -> int:
    """Función principal del bot"""
    args = _build_parser().parse_args(argv)

    logger.info("=" * 60)
    logger.info("🚀 TRADING BOT - INICIANDO")
    logger.info(f"📅 Fecha y hora: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info("=" * 60)

    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"❌ {e}")
        return 1
    get_redactor().register_secrets_from_config(Config)

    bot = build_orchestrator(args.strategy, args.balance)

    if args.once:
        try:
            bot.run_cycle()
            print(json.dumps(bot.get_report(), indent=2, default=str))
        finally:
            bot.close()
        return 0

    setup_scheduler(bot)
    bot.run_cycle()
    try:
        while True:
            schedule.run_pending()
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("⚠️ Bot detenido por el usuario (Ctrl+C)")
    finally:
        schedule.clear()
        bot.close()
        logger.info(json.dumps(bot.get_report(), default=str))
        logger.info("👋 ¡Hasta pronto!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
