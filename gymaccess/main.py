import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from redis.exceptions import RedisError
from slowapi.errors import RateLimitExceeded
import logging
import time

from gymaccess.core.logging_config import setup_logging

# Configurar logging ANTES de importar/crear otros elementos
setup_logging()

from gymaccess.api.v1.api import api_router
from gymaccess.core.config import get_settings
from gymaccess.core.exceptions import AccessControlError, access_control_exception_handler
from gymaccess.core.scheduler import init_scheduler, shutdown_scheduler
from gymaccess.db.redis_client import initialize_redis_pool, close_redis_client
from gymaccess.middleware.rate_limit import limiter, custom_rate_limit_exceeded_handler

logger = logging.getLogger(__name__)

settings_instance = get_settings()

# Cabeceras que nunca se escriben en claro en los logs
MASKED_HEADERS = ("cookie", "stripe-signature")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Lifespan: Startup iniciado...")

    if settings_instance.SCHEDULER_ENABLED:
        app.state.scheduler = init_scheduler()
        logger.info("Lifespan: Scheduler inicializado.")
    else:
        logger.info("Lifespan: Scheduler deshabilitado por configuración.")

    # El check-in funciona sin Redis; solo se pierde la difusión en tiempo real
    try:
        await initialize_redis_pool()
        logger.info("Lifespan: Redis connection pool inicializado correctamente.")
    except (RedisError, ValueError) as e:
        logger.error(f"Lifespan: Error al inicializar Redis connection pool: {e}", exc_info=True)

    yield

    logger.info("Lifespan: Shutdown iniciado...")
    shutdown_scheduler()
    await close_redis_client()
    logger.info("Lifespan: Connection pool de Redis cerrado.")


app = FastAPI(
    title=settings_instance.PROJECT_NAME,
    description=settings_instance.PROJECT_DESCRIPTION,
    version=settings_instance.VERSION,
    openapi_url=f"{settings_instance.API_V1_STR}/openapi.json",
    docs_url=f"{settings_instance.API_V1_STR}/docs",
    redoc_url=f"{settings_instance.API_V1_STR}/redoc",
    lifespan=lifespan,
)

# Errores del dominio con código estable
app.add_exception_handler(AccessControlError, access_control_exception_handler)

# Configurar rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, custom_rate_limit_exceeded_handler)


def mask_headers(headers) -> dict:
    """Copia de las cabeceras con Authorization y secretos enmascarados."""
    headers_dict = dict(headers)
    auth_header = headers_dict.get("authorization")
    if auth_header:
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
            headers_dict["authorization"] = f"Bearer ****{token[-6:]}" if len(token) > 6 else "Bearer ****"
        else:
            headers_dict["authorization"] = "***masked***"
    for key in MASKED_HEADERS:
        if key in headers_dict:
            headers_dict[key] = "***masked***"
    return headers_dict


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    logger.info(f"Middleware: Recibida petición: {request.method} {request.url.path}")
    if settings_instance.DEBUG_MODE:
        logger.debug(f"Middleware: Headers: {mask_headers(request.headers)}")

    response = await call_next(request)

    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = f"{process_time:.4f}"
    logger.info(
        f"Middleware: Enviando respuesta: {response.status_code} ({process_time * 1000:.1f} ms)"
    )
    return response


# Lista de orígenes permitidos para CORS
origins = [str(origin) for origin in settings_instance.BACKEND_CORS_ORIGINS]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=86400,  # 24 horas en segundos
)

app.include_router(api_router, prefix=settings_instance.API_V1_STR)


@app.get("/")
def root():
    return {
        "message": "Bienvenido a la API de GymAccess",
        "docs": f"{settings_instance.API_V1_STR}/docs",
    }


if __name__ == "__main__":
    uvicorn.run("gymaccess.main:app", host="0.0.0.0", port=8000, reload=settings_instance.DEBUG_MODE)
