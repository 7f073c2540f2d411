"""
Gestor de base de datos SQLite para snapshots de portafolio, trades y decisiones.
Implementa el sink de persistencia que el PortfolioManager llama tras cada mutación.
"""
import json
import os
import sqlite3
import threading
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.domain import Decision, Portfolio, Trade
from core.risk import PortfolioSink
from utils.logger import logger


def _portfolio_to_dict(portfolio: Portfolio) -> Dict[str, Any]:
    data = asdict(portfolio)
    for trade in data["trades"]:
        trade["side"] = trade["side"].value
    return data


class DatabaseManager(PortfolioSink):
    """Gestor de base de datos para auditoría del bot (thread-safe)"""

    def __init__(self, db_path: str = "data/trading_bot.db"):
        """
        Inicializa el gestor de base de datos

        Args:
            db_path: Ruta al archivo de base de datos
        """
        self.db_path = db_path
        self._lock = threading.RLock()

        # Crear directorio si no existe
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        # Inicializar base de datos
        self.init_database()
        logger.info(f"✅ Base de datos inicializada: {db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Obtiene una conexión thread-safe a SQLite."""
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def init_database(self) -> None:
        """Crea las tablas si no existen"""
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()

            try:
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS portfolio_snapshots (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        cash REAL NOT NULL,
                        total_value REAL NOT NULL,
                        total_return REAL NOT NULL,
                        open_positions INTEGER NOT NULL,
                        snapshot TEXT NOT NULL,
                        created_at DATETIME NOT NULL
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS trades (
                        id TEXT PRIMARY KEY,
                        symbol TEXT NOT NULL,
                        side TEXT NOT NULL,
                        quantity REAL NOT NULL,
                        price REAL NOT NULL,
                        timestamp INTEGER NOT NULL,
                        confidence REAL,
                        rationale TEXT,
                        entry_price REAL
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS decisions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        symbol TEXT NOT NULL,
                        action TEXT NOT NULL,
                        confidence REAL NOT NULL,
                        rationale TEXT,
                        price REAL NOT NULL,
                        stop_loss REAL,
                        take_profit REAL,
                        created_at DATETIME NOT NULL
                    )
                """)

                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_trades_symbol
                    ON trades(symbol)
                """)

                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_decisions_symbol
                    ON decisions(symbol)
                """)

                conn.commit()
            finally:
                conn.close()

    def on_portfolio_snapshot(self, portfolio: Portfolio) -> None:
        """Guarda un snapshot completo del portafolio (thread-safe)"""
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT INTO portfolio_snapshots
                        (cash, total_value, total_return, open_positions, snapshot, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        portfolio.cash,
                        portfolio.total_value,
                        portfolio.total_return,
                        len(portfolio.positions),
                        json.dumps(_portfolio_to_dict(portfolio)),
                        datetime.now().isoformat(),
                    ),
                )
                conn.commit()
            finally:
                conn.close()

    def on_trade(self, trade: Trade) -> None:
        """Guarda un trade ejecutado; los trades son inmutables"""
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT OR IGNORE INTO trades
                        (id, symbol, side, quantity, price, timestamp, confidence, rationale, entry_price)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        trade.id,
                        trade.symbol,
                        trade.side.value,
                        trade.quantity,
                        trade.price,
                        trade.timestamp,
                        trade.confidence,
                        trade.rationale,
                        trade.entry_price,
                    ),
                )
                conn.commit()
            finally:
                conn.close()

    def save_decision(self, symbol: str, decision: Decision, price: float) -> int:
        """
        Guarda la decisión recibida del proveedor para un símbolo

        Returns:
            ID de la decisión guardada
        """
        with self._lock:
            conn = self._get_connection()
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO decisions
                        (symbol, action, confidence, rationale, price, stop_loss, take_profit, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        symbol,
                        decision.action.value,
                        decision.confidence,
                        decision.rationale,
                        price,
                        decision.stop_loss,
                        decision.take_profit,
                        datetime.now().isoformat(),
                    ),
                )
                conn.commit()
                return cursor.lastrowid
            finally:
                conn.close()

    def get_trades(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Obtiene los trades más recientes primero"""
        with self._lock:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT * FROM trades ORDER BY timestamp DESC, rowid DESC LIMIT ?", (limit,)
                ).fetchall()
                return [dict(row) for row in rows]
            finally:
                conn.close()

    def get_latest_snapshot(self) -> Optional[Dict[str, Any]]:
        """Obtiene el último snapshot guardado (solo auditoría)"""
        with self._lock:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT snapshot FROM portfolio_snapshots ORDER BY id DESC LIMIT 1"
                ).fetchone()
                return json.loads(row["snapshot"]) if row else None
            finally:
                conn.close()

    def count_snapshots(self) -> int:
        with self._lock:
            conn = self._get_connection()
            try:
                return conn.execute("SELECT COUNT(*) FROM portfolio_snapshots").fetchone()[0]
            finally:
                conn.close()
