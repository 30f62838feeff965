"""
Rate limiting con slowapi.

La emisión de tokens QR y su validación tienen límites propios: un escáner
legítimo valida muchos códigos por minuto, un miembro apenas emite unos pocos.
"""

import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from gymaccess.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def get_client_identifier(request: Request) -> str:
    """Obtener identificador único del cliente para rate limiting de forma segura.

    - Por defecto usa la IP del socket (ASGI client).
    - Si TRUST_PROXY_HEADERS=True, usa el primer IP de X-Forwarded-For (cliente original) cuando existe.
    """
    if get_settings().TRUST_PROXY_HEADERS:
        # X-Forwarded-For: client, proxy1, proxy2 ... -> tomar el primero
        fwd = request.headers.get("X-Forwarded-For")
        if fwd:
            return fwd.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip
    # IP del cliente según ASGI/uvicorn
    if request.client and request.client.host:
        return request.client.host
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_client_identifier,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
)

# Límites específicos por tipo de endpoint
RATE_LIMITS = {
    "token_issue": settings.RATE_LIMIT_TOKEN_ISSUE,
    "token_validate": settings.RATE_LIMIT_TOKEN_VALIDATE,
    "billing_create": "5 per minute",
    "billing_webhook": "100 per minute",  # Webhooks de Stripe pueden ser frecuentes
}


def custom_rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handler personalizado para rate limit exceeded"""
    logger.warning(
        f"Rate limit exceeded para {get_client_identifier(request)} "
        f"en {request.url.path} - Límite: {exc.detail}"
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": "RATE_LIMIT_EXCEEDED",
            "detail": "Demasiadas solicitudes. Intenta nuevamente más tarde.",
            "limit": exc.detail,
        },
    )


__all__ = ["limiter", "RATE_LIMITS", "custom_rate_limit_exceeded_handler", "get_client_identifier"]
