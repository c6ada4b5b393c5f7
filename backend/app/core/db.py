from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from .config import get_settings


class Base(DeclarativeBase):
    pass


def _connect_args(database_url: str) -> dict:
    # Las rutas async usan la sesión en un hilo distinto al que la abrió
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


settings = get_settings()
engine = create_engine(
    settings.database_url, future=True, connect_args=_connect_args(settings.database_url)
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_db():
    """Crea las tablas de fórmulas por cliente y de viajes si no existen."""
    from ..models.formula import FormulaCliente
    from ..models.viaje import Viaje

    Base.metadata.create_all(
        bind=engine, tables=[FormulaCliente.__table__, Viaje.__table__]
    )


def get_db():
    """Dependencia de FastAPI; los servicios hacen commit de sus propias escrituras."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
