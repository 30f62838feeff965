"""
Utilidades para el manejo de zonas horarias y del reloj del sistema.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
import pytz


def utcnow() -> datetime:
    """Hora actual en UTC (aware). Única fuente de reloj de pared del motor."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normaliza un datetime a UTC aware.

    Las columnas DateTime(timezone=True) devuelven valores naive en SQLite;
    se interpretan como UTC, que es como se guardan.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_current_time_in_gym_timezone(gym_timezone: str, now: Optional[datetime] = None) -> datetime:
    """
    Obtiene la hora actual en la zona horaria del gimnasio.

    Args:
        gym_timezone: Zona horaria del gimnasio (ej: 'America/Mexico_City')
        now: Instante de referencia en UTC (por defecto, ahora)

    Returns:
        Datetime aware representando la hora actual en la zona horaria del gimnasio
    """
    utc_now = ensure_utc(now) if now else utcnow()
    tz = pytz.timezone(gym_timezone)
    return utc_now.astimezone(tz)


def local_day_bounds_utc(gym_timezone: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Calcula el inicio y fin del día local del gimnasio expresados en UTC.

    Se usa para "check-ins de hoy", que se cuenta en el día local de la sede
    y no en el día UTC.

    Returns:
        Tupla (inicio_utc, fin_utc) con fin exclusivo
    """
    tz = pytz.timezone(gym_timezone)
    local_now = get_current_time_in_gym_timezone(gym_timezone, now)
    today = local_now.date()
    tomorrow = today + timedelta(days=1)
    # Localizar cada medianoche por separado para respetar cambios de horario
    local_midnight = tz.localize(datetime(today.year, today.month, today.day))
    next_midnight = tz.localize(datetime(tomorrow.year, tomorrow.month, tomorrow.day))
    return local_midnight.astimezone(timezone.utc), next_midnight.astimezone(timezone.utc)
