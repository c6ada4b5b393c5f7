from backend.app.core.db import SessionLocal, init_db
from backend.app.models.formula import FormulaCliente
from backend.app.models.viaje import Viaje


def fresh_session():
    init_db()
    db = SessionLocal()
    db.query(Viaje).delete()
    db.query(FormulaCliente).delete()
    db.commit()
    return db
