from typing import Optional, List, Dict
from pydantic import BaseModel, Field, FiniteFloat
from datetime import date, datetime

Medida = Optional[float]


class ViajeCreateRequest(BaseModel):
    clienteId: str = Field(min_length=1)
    tipoUnidad: str = "Sider"
    fecha: date
    palets: Medida = Field(default=None, ge=0, le=1e12)
    distancia: Medida = Field(default=None, ge=0, le=1e12)
    peso: Medida = Field(default=None, ge=0, le=1e12)
    volumen: Medida = Field(default=None, ge=0, le=1e12)
    tiempo: Medida = Field(default=None, ge=0, le=1e12)
    combustible: Medida = Field(default=None, ge=0, le=1e12)
    peaje: Medida = Field(default=None, ge=0, le=1e12)
    tarifaBase: Medida = Field(default=None, ge=0, le=1e12)
    multiplicador: Medida = Field(default=None, ge=-1e12, le=1e12)


class ViajeResponse(BaseModel):
    id: str
    clienteId: str
    tipoUnidad: str
    fecha: date
    tarifaTotal: Optional[float] = None
    tarifaNeta: Optional[float] = None
    peaje: Optional[float] = None
    formulaUsada: Optional[str] = None
    tarifaEstado: str
    tarifaError: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class LoteItem(BaseModel):
    formula: str
    contexto: Dict[str, FiniteFloat] = Field(default_factory=dict)


class LoteRequest(BaseModel):
    items: List[LoteItem] = Field(default_factory=list, max_length=1000)


class LoteItemResult(BaseModel):
    index: int
    total: Optional[float] = None
    tarifaNeta: Optional[float] = None
    peaje: Optional[float] = None
    formulaUsed: Optional[str] = None
    error: Optional[str] = None
    kind: Optional[str] = None
    position: Optional[int] = None
