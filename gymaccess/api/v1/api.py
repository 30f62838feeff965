from fastapi import APIRouter

from gymaccess.api.v1.endpoints import access, capacity, checkins, subscriptions, webhooks

api_router = APIRouter()

# Sedes accesibles y sede principal
api_router.include_router(access.router, prefix="/access", tags=["access"])

# Capacidad por sede
api_router.include_router(capacity.router, prefix="/capacity", tags=["capacity"])

# Check-in con QR y stream en vivo
api_router.include_router(checkins.router, prefix="/checkins", tags=["checkins"])

# Alta de suscripciones y estado de acceso
api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])

# Webhooks de facturación
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
