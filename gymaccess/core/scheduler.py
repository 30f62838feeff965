from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.exc import OperationalError, DBAPIError, SQLAlchemyError
from datetime import timedelta, timezone
from functools import wraps
import logging
import time

from gymaccess.core.config import get_settings
from gymaccess.core.timezone_utils import utcnow
from gymaccess.db.session import SessionLocal
from gymaccess.repositories.checkin import checkin_token_repository
from gymaccess.services.subscriptions import subscription_service

logger = logging.getLogger(__name__)

# Variable global para mantener referencia al scheduler
_scheduler = None


def retry_on_db_error(max_retries=3, delay=2):
    """
    Decorator para reintentar operaciones en caso de errores de BD.

    Útil para scheduled tasks que pueden fallar por conexiones cerradas
    por pgbouncer o timeouts transitorios.

    Args:
        max_retries: Número máximo de reintentos (default: 3)
        delay: Tiempo base de espera entre reintentos en segundos (default: 2)
               Se aplica backoff lineal: delay * (attempt + 1)
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except (OperationalError, DBAPIError) as e:
                    if attempt < max_retries - 1:
                        wait_time = delay * (attempt + 1)
                        logger.warning(
                            f"DB error in {func.__name__}, retry {attempt + 1}/{max_retries} "
                            f"after {wait_time}s: {str(e)}"
                        )
                        time.sleep(wait_time)
                    else:
                        logger.error(
                            f"Max retries ({max_retries}) reached for {func.__name__}: {str(e)}",
                            exc_info=True
                        )
                        raise
        return wrapper
    return decorator


@retry_on_db_error(max_retries=3, delay=2)
def expire_grace_periods(session_factory=SessionLocal):
    """
    Persiste grace -> restricted para los periodos de gracia vencidos.

    El acceso ya se deriva como restringido sin esta tarea; solo mantiene el
    estado almacenado al día para consultas y reportes.
    """
    logger.info("Running scheduled task: expire_grace_periods")
    db = session_factory()
    try:
        updated = subscription_service.expire_elapsed_grace_periods(db, utcnow())
        logger.info(f"Periodos de gracia vencidos persistidos: {updated}")
        return updated
    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()


@retry_on_db_error(max_retries=3, delay=2)
def purge_expired_tokens(session_factory=SessionLocal):
    """
    Elimina tokens QR expirados hace más de EXPIRED_TOKEN_RETENTION_HOURS.
    La expiración se aplica al validar; esto solo libera espacio.
    """
    logger.info("Running scheduled task: purge_expired_tokens")
    retention = timedelta(hours=get_settings().EXPIRED_TOKEN_RETENTION_HOURS)
    db = session_factory()
    try:
        count = checkin_token_repository.purge_expired(db, utcnow() - retention)
        db.commit()
        logger.info(f"Tokens QR expirados eliminados: {count}")
        return count
    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()


def init_scheduler():
    """
    Inicializa el programador de tareas
    """
    global _scheduler

    logger.info("Initializing scheduler with UTC timezone")
    _scheduler = AsyncIOScheduler(timezone=timezone.utc)

    # Persistir periodos de gracia vencidos cada hora
    _scheduler.add_job(
        expire_grace_periods,
        trigger=CronTrigger(minute=5),
        id='expire_grace_periods',
        replace_existing=True
    )

    # Limpieza diaria de tokens QR expirados
    _scheduler.add_job(
        purge_expired_tokens,
        trigger=CronTrigger(hour=3, minute=0),
        id='purge_expired_tokens',
        replace_existing=True
    )

    _scheduler.start()
    logger.info("Scheduler started")
    return _scheduler


def shutdown_scheduler():
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    _scheduler = None


# Función para obtener el scheduler (útil para pruebas y otros módulos)
def get_scheduler():
    global _scheduler
    return _scheduler
