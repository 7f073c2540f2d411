"""
Módulo de seguridad centralizado.
Redacta credenciales del exchange y del proveedor de decisiones antes de que
lleguen a logs o mensajes de error.
"""
import re
from typing import Any, Iterable, Optional, Set

REDACTED = '[SENSITIVE_DATA_REDACTED]'


class SecurityConfig:
    """Configuración de seguridad centralizada."""

    # Patrones con un grupo de prefijo que se conserva y un valor que se oculta
    PREFIXED_PATTERNS = [
        r'(Bearer\s+)[A-Za-z0-9._~+/=-]{8,}',  # Cabecera Authorization del proveedor HTTP
        r'((?:api[_-]?key|apiKey|secret|signature|token)=)[^&\s"\']+',  # Query strings firmadas
    ]

    # Patrones que se ocultan completos
    SENSITIVE_PATTERNS = [
        r'sk-[a-zA-Z0-9]{32,}',  # Claves estilo sk- de proveedores
        r'[a-zA-Z0-9]{32,}',  # Tokens largos (API keys de exchanges)
    ]

    # Atributos de Config que contienen secretos
    SENSITIVE_CONFIG_ATTRS = (
        'EXCHANGE_API_KEY',
        'EXCHANGE_API_SECRET',
        'DECISION_PROVIDER_API_KEY',
    )

    MIN_SECRET_LENGTH = 8


def mask_secret(secret: str) -> str:
    """Deja visibles los 2 primeros y últimos caracteres para depuración."""
    if len(secret) > SecurityConfig.MIN_SECRET_LENGTH:
        return f"{secret[:2]}***{secret[-2:]}"
    return '[REDACTED]'


class SecretRedactor:
    """Redactor de secretos para logs y mensajes de error."""

    def __init__(self):
        self._secrets: Set[str] = set()
        self._prefixed = [re.compile(p) for p in SecurityConfig.PREFIXED_PATTERNS]
        self._patterns = [re.compile(p) for p in SecurityConfig.SENSITIVE_PATTERNS]

    def register_secret(self, secret: Optional[str]) -> None:
        """Registra un secreto para ser redactado (se ignoran los muy cortos)."""
        if secret and len(secret) >= SecurityConfig.MIN_SECRET_LENGTH:
            self._secrets.add(secret)

    def register_secrets(self, secrets: Iterable[Optional[str]]) -> None:
        for secret in secrets:
            self.register_secret(secret)

    def register_secrets_from_config(self, config_class: Any) -> None:
        """Registra las credenciales del exchange y del proveedor definidas en Config."""
        self.register_secrets(
            getattr(config_class, attr, None) for attr in SecurityConfig.SENSITIVE_CONFIG_ATTRS
        )

    def redact(self, text: str) -> str:
        if not text:
            return text

        # Los secretos más largos primero para no dejar restos de uno que contiene a otro
        result = text
        for secret in sorted(self._secrets, key=len, reverse=True):
            result = result.replace(secret, mask_secret(secret))

        for pattern in self._prefixed:
            result = pattern.sub(lambda m: f"{m.group(1)}{REDACTED}", result)
        for pattern in self._patterns:
            result = pattern.sub(REDACTED, result)
        return result

    def redact_exception(self, exc: BaseException) -> str:
        """Redacta información sensible de una excepción."""
        return self.redact(f"{type(exc).__name__}: {exc}")


# Instancia global del redactor
_redactor = SecretRedactor()


def get_redactor() -> SecretRedactor:
    return _redactor


def sanitize_log_message(message: str) -> str:
    """Sanitiza un mensaje de log removiendo información sensible."""
    return _redactor.redact(message)


def sanitize_exception(exc: BaseException) -> str:
    """Sanitiza una excepción para logging seguro."""
    return _redactor.redact_exception(exc)
