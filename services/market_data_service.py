"""
Servicio de datos de mercado sobre ccxt.
Provee el feed de precios actuales y el histórico de cierres que consume el núcleo.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import ccxt
import pandas as pd

from config.config import Config
from core.indicators import TIMEFRAME_MINUTES
from utils.logger import logger

OHLCV_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


@dataclass
class MarketDataConfig:
    """Configuración del servicio de datos de mercado."""

    RETRY_ATTEMPTS: int = 3
    BACKOFF_SECONDS: tuple = (2, 4, 8)


class MarketDataError(Exception):
    """Error obteniendo datos del exchange."""


def timeframe_minutes(timeframe: str) -> int:
    """Convierte un timeframe ccxt ('1m'...'1d') a minutos."""
    if timeframe not in TIMEFRAME_MINUTES:
        raise ValueError(f"Timeframe no soportado: {timeframe}")
    return TIMEFRAME_MINUTES[timeframe]


class MarketDataService:
    """Feed de precios: último precio por símbolo e histórico de cierres."""

    def __init__(
        self,
        exchange: Optional[Any] = None,
        config: Optional[MarketDataConfig] = None,
        sleep=time.sleep,
    ) -> None:
        self.config = config or MarketDataConfig()
        self._sleep = sleep
        self.exchange = exchange if exchange is not None else self._create_exchange()

    def _create_exchange(self) -> Any:
        """Crea el cliente ccxt configurado en Config.EXCHANGE_ID."""
        exchange_class = getattr(ccxt, Config.EXCHANGE_ID, None)
        if exchange_class is None:
            raise MarketDataError(f"Exchange no soportado por ccxt: {Config.EXCHANGE_ID}")

        params: Dict[str, Any] = {"enableRateLimit": True}
        if Config.EXCHANGE_API_KEY and Config.EXCHANGE_API_SECRET:
            params["apiKey"] = Config.EXCHANGE_API_KEY
            params["secret"] = Config.EXCHANGE_API_SECRET
        else:
            logger.info(f"ℹ️ {Config.EXCHANGE_ID} en modo solo lectura (sin credenciales)")

        exchange = exchange_class(params)
        logger.info(f"✅ Conexión con {Config.EXCHANGE_ID} inicializada")
        return exchange

    def _execute_request(self, func, *args, **kwargs) -> Any:
        """Ejecuta una llamada al exchange con retry en errores de red."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return func(*args, **kwargs)
            except ccxt.NetworkError as e:
                logger.warning(f"⚠️ Error de red en exchange (intento {attempt}): {e}")
                if attempt >= self.config.RETRY_ATTEMPTS:
                    raise MarketDataError("Error de red persistente al llamar al exchange") from e
                backoff = self.config.BACKOFF_SECONDS
                self._sleep(backoff[min(attempt - 1, len(backoff) - 1)])
            except ccxt.ExchangeError as e:
                logger.error(f"❌ Error del exchange: {e}")
                raise MarketDataError(str(e)) from e

    def get_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        """
        Obtiene el último precio de cada símbolo.

        Los símbolos sin ticker o con precio inválido se omiten.
        """
        wanted = list(symbols)
        tickers = self._execute_request(self.exchange.fetch_tickers, wanted)
        if not isinstance(tickers, dict):
            raise MarketDataError("Respuesta de fetch_tickers no válida")

        prices: Dict[str, float] = {}
        for symbol in wanted:
            data = tickers.get(symbol) or {}
            try:
                price = float(data.get("last"))
            except (TypeError, ValueError):
                logger.debug(f"Sin precio válido para {symbol}")
                continue
            if price > 0:
                prices[symbol] = price
        return prices

    def get_ohlcv(self, symbol: str, timeframe: str = "1h", limit: int = 500) -> pd.DataFrame:
        """Descarga velas OHLCV como DataFrame ordenado del más antiguo al más reciente."""
        timeframe_minutes(timeframe)
        ohlcv = self._execute_request(self.exchange.fetch_ohlcv, symbol, timeframe=timeframe, limit=limit)
        df = pd.DataFrame(ohlcv or [], columns=OHLCV_COLUMNS)
        if df.empty:
            return df
        df = df.dropna(subset=["close"]).sort_values("timestamp").reset_index(drop=True)
        df["close"] = df["close"].astype(float)
        return df

    def get_price_history(self, symbol: str, timeframe: str = "1h", limit: int = 500) -> List[float]:
        """Histórico de cierres (más antiguo primero) para el motor de indicadores."""
        df = self.get_ohlcv(symbol, timeframe=timeframe, limit=limit)
        if df.empty:
            return []
        return df["close"].tolist()
