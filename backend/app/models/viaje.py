from sqlalchemy import Column, String, DateTime, Date, Float, Text
from datetime import datetime
from ..core.db import Base

TARIFA_PENDIENTE = "pendiente"
TARIFA_CALCULADA = "calculada"
TARIFA_REVISION = "revision"


class Viaje(Base):
    __tablename__ = "viajes"

    id = Column(String, primary_key=True)
    cliente_id = Column(String, nullable=False, index=True)
    tipo_unidad = Column(String, nullable=False, default="Sider")
    fecha = Column(Date, nullable=False)

    # Atributos medidos que alimentan la fórmula
    palets = Column(Float, nullable=True)
    distancia = Column(Float, nullable=True)
    peso = Column(Float, nullable=True)
    volumen = Column(Float, nullable=True)
    tiempo = Column(Float, nullable=True)
    combustible = Column(Float, nullable=True)
    peaje = Column(Float, nullable=True)
    tarifa_base = Column(Float, nullable=True)  # valor unitario del tramo
    multiplicador = Column(Float, nullable=True)

    # Resultado de la tarifa
    tarifa_total = Column(Float, nullable=True)
    tarifa_neta = Column(Float, nullable=True)
    peaje_cobrado = Column(Float, nullable=True)
    formula_usada = Column(Text, nullable=True)
    tarifa_estado = Column(String, default=TARIFA_PENDIENTE)
    tarifa_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
