from typing import Optional, List, Dict
from pydantic import BaseModel, Field, FiniteFloat
from datetime import date, datetime


class FormulaCreateRequest(BaseModel):
    clienteId: str = Field(min_length=1)
    tipoUnidad: str
    formula: str = Field(min_length=1)
    vigenciaDesde: date
    vigenciaHasta: Optional[date] = None


class FormulaSupersedeRequest(BaseModel):
    clienteId: str = Field(min_length=1)
    tipoUnidad: str
    formula: str = Field(min_length=1)
    vigenciaDesde: date


class FormulaUpdateRequest(BaseModel):
    formula: Optional[str] = Field(default=None, min_length=1)
    vigenciaDesde: Optional[date] = None
    vigenciaHasta: Optional[date] = None


class FormulaResponse(BaseModel):
    id: str
    clienteId: str
    tipoUnidad: str
    formula: str
    vigenciaDesde: date
    vigenciaHasta: Optional[date] = None
    estado: str
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class FormulaAplicableResponse(BaseModel):
    formula: str
    esDefault: bool
    formulaId: Optional[str] = None
    tipoUnidad: Optional[str] = None


class FormulaErrorResponse(BaseModel):
    kind: str
    message: str
    position: Optional[int] = None


class FormulaValidateRequest(BaseModel):
    formula: str
    contexto: Dict[str, FiniteFloat] = Field(default_factory=dict)


class FormulaComplejidad(BaseModel):
    nivel: str
    puntuacion: int
    factores: List[str] = Field(default_factory=list)


class FormulaAnalisis(BaseModel):
    longitud: int
    variables: List[str] = Field(default_factory=list)
    identificadores: List[str] = Field(default_factory=list)
    operadores: List[str] = Field(default_factory=list)
    tieneParentesis: bool = False
    advertencias: List[str] = Field(default_factory=list)
    complejidad: FormulaComplejidad
    sugerencias: List[str] = Field(default_factory=list)


class FormulaValidateResponse(BaseModel):
    valida: bool
    error: Optional[FormulaErrorResponse] = None
    analisis: Optional[FormulaAnalisis] = None
    resultado: Optional[float] = None
    contextoPrueba: Dict[str, float] = Field(default_factory=dict)


class FormulaEvaluateRequest(BaseModel):
    formula: str
    contexto: Dict[str, FiniteFloat] = Field(default_factory=dict)


class FormulaEvaluateResponse(BaseModel):
    value: float
    formulaUsed: str
