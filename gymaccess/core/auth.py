"""
Autenticación por Bearer JWT.

Los tokens los emite el proveedor de identidad firmados con HS256; el claim
`sub` identifica al usuario (users.auth_id). Los roles de staff y de
organización no viajan en el token: se consultan en la base de datos.
"""
from typing import Any, Dict, Optional
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from gymaccess.core.config import get_settings
from gymaccess.db.session import get_db
from gymaccess.models.user import User
from gymaccess.repositories.user import user_repository

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class UnauthenticatedException(HTTPException):
    def __init__(self, detail: str = "No se pudieron validar las credenciales"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Verifica firma, expiración y audiencia del token.

    Raises:
        UnauthenticatedException: Si el token no es válido
    """
    settings = get_settings()
    options = {"verify_aud": bool(settings.AUTH_JWT_AUDIENCE)}
    try:
        payload = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=settings.AUTH_JWT_ALGORITHMS,
            audience=settings.AUTH_JWT_AUDIENCE or None,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedException("Token expirado")
    except jwt.JWTClaimsError as e:
        raise UnauthenticatedException(f"Claims inválidos: {str(e)}")
    except JWTError as e:
        raise UnauthenticatedException(f"Token mal formado: {str(e)}")

    if not payload.get("sub"):
        raise UnauthenticatedException("El token no incluye 'sub'")
    return payload


def get_user_from_token(db: Session, token: Optional[str]) -> User:
    """Resuelve el usuario local a partir de un JWT (también usado por el WebSocket)."""
    if not token:
        raise UnauthenticatedException("Falta el token de acceso")
    payload = decode_access_token(token)
    user = user_repository.get_by_auth_id(db, payload["sub"])
    if user is None:
        logger.warning("Token válido para un usuario inexistente en la base de datos local")
        raise UnauthenticatedException("Usuario no encontrado")
    return user


def get_current_user(
    db: Session = Depends(get_db),
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> User:
    """
    Dependencia principal: devuelve el usuario autenticado de la base de datos local.
    """
    if creds is None:
        raise UnauthenticatedException("Falta el token Bearer")
    return get_user_from_token(db, creds.credentials)
