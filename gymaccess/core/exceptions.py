"""
Taxonomía de errores del motor de acceso y admisión.

Todos los errores son recuperables y visibles para el usuario: se devuelven con
un código estable para que el cliente muestre el mensaje correcto y nunca se
reintentan automáticamente. Un token consumido o expirado no se reintenta: la
acción correcta es generar un nuevo código QR o contactar con facturación.
"""
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)

# Mensaje común para fallos de token: el staff solo necesita saber que el
# miembro debe refrescar su QR
TOKEN_REFRESH_MESSAGE = "Código QR no válido. Pide al miembro que genere un nuevo código."


class AccessControlError(Exception):
    """Error base con código estable y estado HTTP asociado."""

    code = "ACCESS_CONTROL_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "No se pudo completar la operación"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "detail": self.message}
        payload.update(self.context)
        return payload


class NoAccessError(AccessControlError):
    """El conjunto de sedes accesibles está vacío. Estado terminal, no un fallo."""
    code = "NO_ACCESS"
    status_code = status.HTTP_403_FORBIDDEN
    message = "No tienes acceso a ninguna sede. Contacta con soporte."


class AccessRestrictedError(AccessControlError):
    code = "ACCESS_RESTRICTED"
    status_code = status.HTTP_403_FORBIDDEN
    message = "Tu acceso está restringido. Actualiza tu método de pago para continuar."


class TokenNotFoundError(AccessControlError):
    code = "TOKEN_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    message = TOKEN_REFRESH_MESSAGE


class TokenExpiredError(AccessControlError):
    code = "TOKEN_EXPIRED"
    status_code = status.HTTP_410_GONE
    message = TOKEN_REFRESH_MESSAGE


class TokenAlreadyUsedError(AccessControlError):
    code = "TOKEN_ALREADY_USED"
    status_code = status.HTTP_409_CONFLICT
    message = TOKEN_REFRESH_MESSAGE


class CapacityBlockedError(AccessControlError):
    code = "CAPACITY_BLOCKED"
    status_code = status.HTTP_409_CONFLICT
    message = "Esta sede está completa en este momento."


class PlanCapacityBlockedError(CapacityBlockedError):
    """El plan agotó su cupo en la sede aunque la sede tenga plazas."""
    code = "PLAN_CAPACITY_BLOCKED"
    message = "Este plan está completo en la sede seleccionada."


class PermissionDeniedError(AccessControlError):
    code = "PERMISSION_DENIED"
    status_code = status.HTTP_403_FORBIDDEN
    message = "Permisos insuficientes para realizar esta acción"


class LocationAccessDeniedError(AccessControlError):
    code = "LOCATION_ACCESS_DENIED"
    status_code = status.HTTP_403_FORBIDDEN
    message = "El miembro no tiene acceso a esta sede"


class NotFoundError(AccessControlError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    message = "Recurso no encontrado"


class InvalidRequestError(AccessControlError):
    code = "INVALID_REQUEST"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Solicitud inválida"


class BillingGatewayError(AccessControlError):
    code = "BILLING_GATEWAY_ERROR"
    status_code = status.HTTP_502_BAD_GATEWAY
    message = "Error al procesar el pago. Intenta nuevamente más tarde."


async def access_control_exception_handler(request: Request, exc: AccessControlError) -> JSONResponse:
    """Renderiza cualquier AccessControlError como {"error": code, "detail": message}."""
    logger.info(f"{exc.code} en {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
