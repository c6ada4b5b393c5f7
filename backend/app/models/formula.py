from sqlalchemy import Column, String, DateTime, Date, Text, Index
from datetime import datetime
from ..core.db import Base


class FormulaCliente(Base):
    """Versión de la fórmula de tarifa de un cliente para un tipo de unidad.

    Las versiones no se borran: al entrar una nueva se cierra la anterior
    fijando ``vigencia_hasta``. ``vigencia_hasta`` nulo significa vigente sin
    fecha de término.
    """

    __tablename__ = "formulas_cliente"
    __table_args__ = (
        Index(
            "ix_formulas_cliente_vigencia",
            "cliente_id",
            "tipo_unidad",
            "vigencia_desde",
        ),
    )

    id = Column(String, primary_key=True)
    cliente_id = Column(String, nullable=False)
    tipo_unidad = Column(String, nullable=False)
    formula = Column(Text, nullable=False)
    vigencia_desde = Column(Date, nullable=False)
    vigencia_hasta = Column(Date, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
