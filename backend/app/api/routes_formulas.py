from datetime import date
from typing import List, Optional
from fastapi import APIRouter, HTTPException, Depends, Query
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.formula import FormulaCliente
from ..schemas.formulas import (
    FormulaAnalisis,
    FormulaAplicableResponse,
    FormulaCreateRequest,
    FormulaErrorResponse,
    FormulaEvaluateRequest,
    FormulaEvaluateResponse,
    FormulaResponse,
    FormulaSupersedeRequest,
    FormulaUpdateRequest,
    FormulaValidateRequest,
    FormulaValidateResponse,
)
from ..services.formula_engine import (
    FormulaError,
    build_context,
    describe_formula,
    evaluate_formula,
)
from ..services.formulas import (
    FormulaNotFoundError,
    FormulaOverlapError,
    FormulaVersionError,
    create_formula,
    estado_vigencia,
    get_applicable_formula,
    get_formula,
    list_formulas,
    supersede_formula,
    update_formula,
)
from ..services.tarifa import PREVIEW_CONTEXT

router = APIRouter()


def _to_response(formula: FormulaCliente) -> FormulaResponse:
    return FormulaResponse(
        id=formula.id,
        clienteId=formula.cliente_id,
        tipoUnidad=formula.tipo_unidad,
        formula=formula.formula,
        vigenciaDesde=formula.vigencia_desde,
        vigenciaHasta=formula.vigencia_hasta,
        estado=estado_vigencia(formula),
        createdAt=formula.created_at,
        updatedAt=formula.updated_at,
    )


def _raise_http(error: Exception):
    if isinstance(error, FormulaError):
        raise HTTPException(status_code=422, detail=error.to_dict())
    if isinstance(error, FormulaOverlapError):
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(error),
                "overlappingFormulaId": error.overlapping.id,
            },
        )
    if isinstance(error, FormulaNotFoundError):
        raise HTTPException(status_code=404, detail=str(error))
    raise HTTPException(status_code=400, detail=str(error))


@router.post("/", response_model=FormulaResponse, status_code=201)
async def create(payload: FormulaCreateRequest, db: Session = Depends(get_db)):
    try:
        formula = create_formula(
            db,
            cliente_id=payload.clienteId,
            tipo_unidad=payload.tipoUnidad,
            formula=payload.formula,
            vigencia_desde=payload.vigenciaDesde,
            vigencia_hasta=payload.vigenciaHasta,
        )
    except (FormulaError, FormulaVersionError) as e:
        _raise_http(e)
    return _to_response(formula)


@router.post("/supersede", response_model=FormulaResponse, status_code=201)
async def supersede(payload: FormulaSupersedeRequest, db: Session = Depends(get_db)):
    try:
        formula = supersede_formula(
            db,
            cliente_id=payload.clienteId,
            tipo_unidad=payload.tipoUnidad,
            formula=payload.formula,
            vigencia_desde=payload.vigenciaDesde,
        )
    except (FormulaError, FormulaVersionError) as e:
        _raise_http(e)
    return _to_response(formula)


@router.get("/cliente/{cliente_id}", response_model=List[FormulaResponse])
async def list_by_cliente(
    cliente_id: str,
    tipoUnidad: Optional[str] = None,
    fecha: Optional[date] = None,
    db: Session = Depends(get_db),
):
    formulas = list_formulas(db, cliente_id, tipo_unidad=tipoUnidad, fecha=fecha)
    return [_to_response(f) for f in formulas]


@router.get("/aplicable", response_model=FormulaAplicableResponse)
async def aplicable(
    clienteId: str = Query(..., min_length=1),
    tipoUnidad: Optional[str] = None,
    fecha: Optional[date] = None,
    db: Session = Depends(get_db),
):
    formula, definicion = get_applicable_formula(
        db, clienteId, tipoUnidad, fecha or date.today()
    )
    return FormulaAplicableResponse(
        formula=formula,
        esDefault=definicion is None,
        formulaId=definicion.id if definicion is not None else None,
        tipoUnidad=definicion.tipo_unidad if definicion is not None else None,
    )


@router.post("/validate", response_model=FormulaValidateResponse)
async def validate(payload: FormulaValidateRequest):
    # Los errores de la fórmula se informan en línea para el editor
    contexto = {**PREVIEW_CONTEXT, **payload.contexto}
    try:
        analisis = FormulaAnalisis(**describe_formula(payload.formula))
    except FormulaError as e:
        return FormulaValidateResponse(
            valida=False,
            error=FormulaErrorResponse(**e.to_dict()),
            contextoPrueba=contexto,
        )
    try:
        result = evaluate_formula(payload.formula, contexto)
    except FormulaError as e:
        # Compila pero falla con el contexto de prueba; se devuelve igual el análisis
        return FormulaValidateResponse(
            valida=False,
            error=FormulaErrorResponse(**e.to_dict()),
            analisis=analisis,
            contextoPrueba=contexto,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return FormulaValidateResponse(
        valida=True,
        analisis=analisis,
        resultado=float(result.value),
        contextoPrueba=contexto,
    )


@router.post("/evaluate", response_model=FormulaEvaluateResponse)
async def evaluate(payload: FormulaEvaluateRequest):
    try:
        result = evaluate_formula(payload.formula, build_context(payload.contexto))
    except FormulaError as e:
        _raise_http(e)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return FormulaEvaluateResponse(value=float(result.value), formulaUsed=result.formula_used)


@router.get("/{formula_id}", response_model=FormulaResponse)
async def get_one(formula_id: str, db: Session = Depends(get_db)):
    try:
        formula = get_formula(db, formula_id)
    except FormulaNotFoundError as e:
        _raise_http(e)
    return _to_response(formula)


@router.patch("/{formula_id}", response_model=FormulaResponse)
async def update(
    formula_id: str, payload: FormulaUpdateRequest, db: Session = Depends(get_db)
):
    changes = {}
    if "vigenciaHasta" in payload.model_fields_set:
        # null explícito reabre la vigencia
        changes["vigencia_hasta"] = payload.vigenciaHasta
    try:
        formula = update_formula(
            db,
            formula_id,
            formula=payload.formula,
            vigencia_desde=payload.vigenciaDesde,
            **changes,
        )
    except (FormulaError, FormulaVersionError, FormulaNotFoundError) as e:
        _raise_http(e)
    return _to_response(formula)
