from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from gymaccess.db.base_class import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Operaciones comunes sobre un modelo.

    Ninguna hace commit: el consumo de tokens y la admisión de suscripciones
    se confirman junto con otras escrituras, así que es el servicio quien
    cierra la transacción.
    """

    def __init__(self, model: Type[ModelType]):
        self.model = model

    def get(self, db: Session, id: Any) -> Optional[ModelType]:
        return db.query(self.model).filter(self.model.id == id).first()

    def add(self, db: Session, **values: Any) -> ModelType:
        """Inserta en la transacción actual; el flush asigna el ID sin confirmar."""
        db_obj = self.model(**values)
        db.add(db_obj)
        db.flush()
        return db_obj
