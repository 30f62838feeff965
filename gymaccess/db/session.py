from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.exc import SQLAlchemyError
import logging

from gymaccess.core.config import get_settings

logger = logging.getLogger(__name__)

# Obtener la instancia de configuración
settings_instance = get_settings()

db_url = str(settings_instance.DATABASE_URL)

# Ocultar credenciales en el log
display_url = db_url
if '@' in display_url:
    scheme = display_url.split('://')[0]
    host_info = display_url.split('@', 1)[1]
    display_url = f"{scheme}://***@{host_info}"

if db_url.startswith("sqlite"):
    engine = create_engine(
        db_url,
        echo=False,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        db_url,
        echo=False,  # SIEMPRE False en producción para mejor rendimiento
        pool_pre_ping=True,
        pool_size=settings_instance.DB_POOL_SIZE,
        max_overflow=settings_instance.DB_MAX_OVERFLOW,
        pool_timeout=30,
        pool_recycle=180,
        connect_args={
            "connect_timeout": 10,
            "options": "-c statement_timeout=30000",
        },
        # El consumo de tokens y la admisión dependen de updates condicionales
        # y bloqueos de fila; READ COMMITTED basta para ambos
        execution_options={"isolation_level": "READ COMMITTED"},
    )

logger.info(f"Engine de base de datos creado: {display_url}")

# Crear clase de sesión
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Dependencia para obtener la sesión de DB
def get_db():
    db = SessionLocal()
    try:
        yield db
    except SQLAlchemyError as e:
        logger.error(f"Error de SQLAlchemy en la sesión: {e}", exc_info=True)
        db.rollback()
        raise  # Relanzar la excepción para que FastAPI la maneje
    finally:
        db.close()
