"""
Logger del bot: consola con colores y archivo plano, ambos con redacción de secretos.
"""
import logging
import sys
from typing import Optional

from config.config import Config
from utils.security import sanitize_log_message

LOGGER_NAME = 'TradingBot'
CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(message)s'
FILE_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'


class ColoredFormatter(logging.Formatter):
    """Formateador con colores para terminal"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        # Copia: el handler de archivo recibe el mismo registro
        colored = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(colored.levelname, self.RESET)
        colored.levelname = f"{color}{colored.levelname}{self.RESET}"
        return super().format(colored)


class SecretsRedactionFilter(logging.Filter):
    """Formatea el mensaje con sus args y redacta secretos antes de emitirlo"""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            record.msg = sanitize_log_message(str(record.getMessage()))
            record.args = ()
        except (TypeError, ValueError) as e:
            # Args que no casan con el formato: se emite el texto crudo redactado
            record.msg = sanitize_log_message(f"{record.msg} (args inválidos: {e})")
            record.args = ()
        return True


def setup_logger(
    name: str = LOGGER_NAME,
    level: str = 'DEBUG',
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configura un logger con consola coloreada y, opcionalmente, archivo.

    Args:
        name: Nombre del logger
        level: Nivel mínimo ('DEBUG', 'INFO', ...)
        log_file: Ruta del archivo de log; None para solo consola

    Returns:
        Logger configurado (los handlers previos se reemplazan)
    """
    configured = logging.getLogger(name)
    configured.setLevel(getattr(logging, level.upper(), logging.DEBUG))

    # Limpiar handlers existentes para evitar duplicados si se recarga
    if configured.hasHandlers():
        configured.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
    console_handler.addFilter(SecretsRedactionFilter())
    configured.addHandler(console_handler)

    if log_file:
        # delay=True: el archivo no se crea hasta el primer registro
        file_handler = logging.FileHandler(log_file, encoding='utf-8', delay=True)
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        file_handler.addFilter(SecretsRedactionFilter())
        configured.addHandler(file_handler)

    return configured


logger = setup_logger(LOGGER_NAME, Config.LOG_LEVEL, Config.LOG_FILE)
