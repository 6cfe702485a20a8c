# diy_backend/db.py
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from diy_backend.config import settings


def create_db_engine(url: str | None = None, echo: bool | None = None, **kwargs) -> Engine:
    """
    Crée l'engine SQLModel / SQLAlchemy.
    À appeler une seule fois au démarrage; l'engine est ensuite passé aux services.
    """
    url = url or settings.DATABASE_URL
    if url.startswith("sqlite") and "connect_args" not in kwargs:
        # FastAPI exécute les routes synchrones dans un pool de threads
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, echo=settings.SQL_ECHO if echo is None else echo, **kwargs)


def init_db(engine: Engine) -> None:
    """
    Crée toutes les tables définies par SQLModel.metadata.
    """
    # importe les modèles pour peupler la metadata
    from diy_backend import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def session_factory(engine: Engine):
    def _factory() -> Session:
        return Session(engine)
    return _factory
