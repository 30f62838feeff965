import os
from typing import Any, List, Optional, Union
from functools import lru_cache
import logging

from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Configurar el logger
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Permitir campos extra en .env
    )

    # Configuración básica
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "GymAccess"
    PROJECT_DESCRIPTION: str = "Control de acceso y admisión para membresías multi-sede"
    VERSION: str = "0.1.0"

    # Debug mode
    DEBUG_MODE: bool = os.getenv("DEBUG_MODE", "False").lower() in ("true", "1", "t")
    # Confiar en cabeceras de proxy para derivar la IP del cliente (rate limiting, logs)
    TRUST_PROXY_HEADERS: bool = os.getenv("TRUST_PROXY_HEADERS", "False").lower() in ("true", "1", "t")
    LOG_TO_FILE: bool = os.getenv("LOG_TO_FILE", "True").lower() in ("true", "1", "t")
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")
    LOG_RETENTION_DAYS: int = int(os.getenv("LOG_RETENTION_DAYS", "14"))

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode='before')
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Base de datos
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./gymaccess.db")
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @field_validator("DATABASE_URL", mode="before")
    def ensure_proper_url_format(cls, v: Optional[str]) -> str:
        """Asegura que DATABASE_URL use el prefijo postgresql:// que espera SQLAlchemy."""
        if not v:
            return "sqlite:///./gymaccess.db"
        if v.startswith('postgres://'):
            logger.info("Corrigiendo formato de postgres:// a postgresql://")
            return 'postgresql://' + v[len('postgres://'):]
        return v

    # Autenticación (JWT emitidos por el proveedor de identidad, HS256)
    AUTH_JWT_SECRET: str = os.getenv("AUTH_JWT_SECRET", "change-me")
    AUTH_JWT_ALGORITHMS: List[str] = ["HS256"]
    AUTH_JWT_AUDIENCE: Optional[str] = os.getenv("AUTH_JWT_AUDIENCE", "authenticated")

    # Configuración de Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_POOL_MAX_CONNECTIONS: int = int(os.getenv("REDIS_POOL_MAX_CONNECTIONS", "50"))
    REDIS_POOL_SOCKET_TIMEOUT: int = int(os.getenv("REDIS_POOL_SOCKET_TIMEOUT", "5"))
    REDIS_POOL_HEALTH_CHECK_INTERVAL: int = int(os.getenv("REDIS_POOL_HEALTH_CHECK_INTERVAL", "30"))
    REDIS_POOL_RETRY_ON_TIMEOUT: bool = os.getenv("REDIS_POOL_RETRY_ON_TIMEOUT", "True").lower() in ("true", "1", "t")
    REDIS_POOL_SOCKET_KEEPALIVE: bool = os.getenv("REDIS_POOL_SOCKET_KEEPALIVE", "True").lower() in ("true", "1", "t")

    @field_validator("REDIS_URL", mode="before")
    def assemble_redis_connection(cls, v: Optional[str]) -> Any:
        if isinstance(v, str):
            # Eliminar comentarios (todo lo que sigue a #)
            if '#' in v:
                v = v.split('#')[0]
            return v.strip()
        return "redis://localhost:6379/0"

    # Stripe
    STRIPE_SECRET_KEY: str = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")

    # Check-in con QR
    CHECKIN_TOKEN_TTL_SECONDS: int = 120
    # Días de gracia tras un pago fallido antes de restringir el acceso
    GRACE_PERIOD_DAYS: int = 7
    # Umbral por defecto cuando la sede no configura soft_limit_threshold
    CAPACITY_DEFAULT_SOFT_THRESHOLD: float = 0.9
    # Backoff fijo para reconexiones del stream de check-ins
    REALTIME_RECONNECT_SECONDS: float = 2.0

    # Tareas programadas
    SCHEDULER_ENABLED: bool = os.getenv("SCHEDULER_ENABLED", "True").lower() in ("true", "1", "t")
    EXPIRED_TOKEN_RETENTION_HOURS: int = 24

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    # "memory://" por proceso; en producción usar la URL de Redis
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    RATE_LIMIT_TOKEN_ISSUE: str = "20 per minute"
    RATE_LIMIT_TOKEN_VALIDATE: str = "120 per minute"

    @field_validator("CHECKIN_TOKEN_TTL_SECONDS", "GRACE_PERIOD_DAYS")
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("El valor debe ser mayor que cero")
        return v

    @field_validator("CAPACITY_DEFAULT_SOFT_THRESHOLD")
    def validate_soft_threshold(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("CAPACITY_DEFAULT_SOFT_THRESHOLD debe estar en (0, 1]")
        return v


# Usar una función con caché para obtener la configuración
@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    logger.info("Configuración cargada correctamente")
    return settings
