"""
Configuración centralizada del bot de trading.
Este archivo carga todas las variables de entorno y las hace disponibles.
"""
import os
from dotenv import load_dotenv

# Cargar variables de entorno desde el archivo .env
load_dotenv()


def _split_symbols(raw: str) -> list:
    return [s.strip().upper() for s in raw.split(',') if s.strip()]


class Config:
    """Clase que contiene toda la configuración del bot"""

    BASE_DIR = os.path.dirname(os.path.dirname(__file__))

    # ========== EXCHANGE (solo feed de precios) ==========
    EXCHANGE_ID = os.getenv('EXCHANGE_ID', 'binance').strip().lower()
    # Opcionales: sin credenciales el feed funciona en modo solo lectura
    EXCHANGE_API_KEY = os.getenv('EXCHANGE_API_KEY')
    EXCHANGE_API_SECRET = os.getenv('EXCHANGE_API_SECRET')

    TRADING_SYMBOLS = _split_symbols(os.getenv('TRADING_SYMBOLS', 'BTC/USDT,ETH/USDT,SOL/USDT'))

    # ========== CAPITAL Y ESTRATEGIA ==========
    INITIAL_BALANCE = float(os.getenv('INITIAL_BALANCE', '10000'))
    STRATEGY_PRESET = os.getenv('STRATEGY_PRESET', 'moderate').strip().lower()

    # ========== CICLO DE ANÁLISIS ==========
    ANALYSIS_INTERVAL_MINUTES = int(os.getenv('ANALYSIS_INTERVAL_MINUTES', '1'))
    CYCLE_COOLDOWN_SECONDS = float(os.getenv('CYCLE_COOLDOWN_SECONDS', '30'))
    PRICE_HISTORY_TIMEFRAME = os.getenv('PRICE_HISTORY_TIMEFRAME', '1h')
    PRICE_HISTORY_LIMIT = int(os.getenv('PRICE_HISTORY_LIMIT', '500'))
    MIN_HISTORY_POINTS = int(os.getenv('MIN_HISTORY_POINTS', '50'))

    # ========== PROVEEDOR DE DECISIONES ==========
    # 'rules' = reglas locales sobre indicadores, 'http' = servicio externo JSON
    DECISION_PROVIDER = os.getenv('DECISION_PROVIDER', 'rules').strip().lower()
    DECISION_PROVIDER_URL = os.getenv('DECISION_PROVIDER_URL')
    DECISION_PROVIDER_API_KEY = os.getenv('DECISION_PROVIDER_API_KEY')
    DECISION_TIMEOUT_SECONDS = float(os.getenv('DECISION_TIMEOUT_SECONDS', '30'))
    DECISION_MAX_RETRIES = int(os.getenv('DECISION_MAX_RETRIES', '3'))

    # ========== PERSISTENCIA Y LOGS ==========
    DB_PATH = os.getenv('DB_PATH', os.path.join('data', 'trading_bot.db'))
    LOG_FILE = os.getenv('LOG_FILE', 'trading_bot.log')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG').strip().upper()

    VALID_PROVIDERS = ('rules', 'http')
    VALID_TIMEFRAMES = ('1m', '5m', '15m', '1h', '4h', '1d')

    @classmethod
    def validate(cls):
        """
        Valida la configuración y reporta todos los problemas juntos:
        1. Estrategia y proveedor de decisiones conocidos
        2. URL obligatoria si el proveedor es HTTP
        3. Valores numéricos dentro de rango
        """
        # Import diferido: core no depende de config
        from core.strategies import DEFAULT_STRATEGIES

        errors = []
        if not cls.TRADING_SYMBOLS:
            errors.append('TRADING_SYMBOLS vacío')
        if cls.STRATEGY_PRESET not in DEFAULT_STRATEGIES:
            errors.append(f"STRATEGY_PRESET desconocido: {cls.STRATEGY_PRESET}")
        if cls.DECISION_PROVIDER not in cls.VALID_PROVIDERS:
            errors.append(f"DECISION_PROVIDER desconocido: {cls.DECISION_PROVIDER}")
        if cls.DECISION_PROVIDER == 'http' and not cls.DECISION_PROVIDER_URL:
            errors.append('DECISION_PROVIDER_URL es obligatorio con DECISION_PROVIDER=http')
        if cls.PRICE_HISTORY_TIMEFRAME not in cls.VALID_TIMEFRAMES:
            errors.append(f"PRICE_HISTORY_TIMEFRAME inválido: {cls.PRICE_HISTORY_TIMEFRAME}")
        if cls.INITIAL_BALANCE <= 0:
            errors.append('INITIAL_BALANCE debe ser positivo')
        if cls.ANALYSIS_INTERVAL_MINUTES <= 0:
            errors.append('ANALYSIS_INTERVAL_MINUTES debe ser positivo')
        if cls.DECISION_TIMEOUT_SECONDS <= 0:
            errors.append('DECISION_TIMEOUT_SECONDS debe ser positivo')

        if errors:
            raise ValueError(f"Configuración inválida: {'; '.join(errors)}")
        return True
