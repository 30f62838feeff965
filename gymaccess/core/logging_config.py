"""
Configuración de logging del servicio de acceso.

Los valores de tokens QR y los JWT son credenciales al portador: nunca deben
aparecer completos en los logs, así que todos los handlers pasan por
`CredentialRedactionFilter`.
"""
import logging
import os
import re
import sys
from logging.handlers import TimedRotatingFileHandler

from gymaccess.core.config import get_settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-32s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# token=..., "token": "...", access_token=... y cabeceras Bearer
_CREDENTIAL_PATTERNS = [
    re.compile(r'((?:access_)?token["\']?\s*[:=]\s*["\']?)([A-Za-z0-9_\-\.]{8})[A-Za-z0-9_\-\.]+'),
    re.compile(r'(Bearer\s+)([A-Za-z0-9_\-\.]{8})[A-Za-z0-9_\-\.]+'),
]


class CredentialRedactionFilter(logging.Filter):
    """Recorta tokens y JWT a sus primeros 8 caracteres."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = message
        for pattern in _CREDENTIAL_PATTERNS:
            redacted = pattern.sub(r"\1\2...", redacted)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def _build_handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    handler.addFilter(CredentialRedactionFilter())
    return handler


def setup_logging():
    """Configura el logger raíz una sola vez al arrancar, según DEBUG_MODE y LOG_TO_FILE."""
    settings = get_settings()
    root = logging.getLogger()
    level = logging.DEBUG if settings.DEBUG_MODE else logging.INFO
    root.setLevel(level)

    # Uvicorn puede haber instalado sus propios handlers
    if root.hasHandlers():
        root.handlers.clear()
    root.addHandler(_build_handler(logging.StreamHandler(sys.stdout), level))

    if settings.LOG_TO_FILE:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            os.path.join(settings.LOG_DIR, "gymaccess.log"),
            when="midnight",
            backupCount=settings.LOG_RETENTION_DAYS,
            encoding="utf-8",
            utc=True,
        )
        root.addHandler(_build_handler(file_handler, level))

    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    root.info("Logging configurado (nivel %s, fichero=%s)", logging.getLevelName(level), settings.LOG_TO_FILE)
