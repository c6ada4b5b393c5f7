import uuid
from typing import List
from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.viaje import Viaje
from ..schemas.viajes import (
    LoteItemResult,
    LoteRequest,
    ViajeCreateRequest,
    ViajeResponse,
)
from ..services.tarifa import aplicar_tarifa, calcular_lote

router = APIRouter()


def _to_response(viaje: Viaje) -> ViajeResponse:
    return ViajeResponse(
        id=viaje.id,
        clienteId=viaje.cliente_id,
        tipoUnidad=viaje.tipo_unidad,
        fecha=viaje.fecha,
        tarifaTotal=viaje.tarifa_total,
        tarifaNeta=viaje.tarifa_neta,
        peaje=viaje.peaje_cobrado,
        formulaUsada=viaje.formula_usada,
        tarifaEstado=viaje.tarifa_estado,
        tarifaError=viaje.tarifa_error,
        createdAt=viaje.created_at,
        updatedAt=viaje.updated_at,
    )


@router.post("/", response_model=ViajeResponse, status_code=201)
async def create_viaje(payload: ViajeCreateRequest, db: Session = Depends(get_db)):
    viaje = Viaje(
        id=str(uuid.uuid4()),
        cliente_id=payload.clienteId,
        tipo_unidad=payload.tipoUnidad,
        fecha=payload.fecha,
        palets=payload.palets,
        distancia=payload.distancia,
        peso=payload.peso,
        volumen=payload.volumen,
        tiempo=payload.tiempo,
        combustible=payload.combustible,
        peaje=payload.peaje,
        tarifa_base=payload.tarifaBase,
        multiplicador=payload.multiplicador,
    )
    db.add(viaje)
    db.commit()

    # La tarifa se calcula después de guardar: un error de fórmula no anula el viaje
    aplicar_tarifa(db, viaje)
    return _to_response(viaje)


@router.get("/{viaje_id}", response_model=ViajeResponse)
async def get_viaje(viaje_id: str, db: Session = Depends(get_db)):
    viaje = db.get(Viaje, viaje_id)
    if not viaje:
        raise HTTPException(status_code=404, detail="Viaje no encontrado")
    return _to_response(viaje)


@router.post("/{viaje_id}/recalcular", response_model=ViajeResponse)
async def recalcular(viaje_id: str, db: Session = Depends(get_db)):
    viaje = db.get(Viaje, viaje_id)
    if not viaje:
        raise HTTPException(status_code=404, detail="Viaje no encontrado")
    aplicar_tarifa(db, viaje)
    return _to_response(viaje)


@router.post("/tarifas/lote", response_model=List[LoteItemResult])
async def lote(payload: LoteRequest):
    resultados = calcular_lote((item.formula, item.contexto) for item in payload.items)
    return [
        LoteItemResult(
            index=r.index,
            total=float(r.tarifa.total) if r.tarifa else None,
            tarifaNeta=float(r.tarifa.tarifa_base) if r.tarifa else None,
            peaje=float(r.tarifa.peaje) if r.tarifa else None,
            formulaUsed=r.tarifa.formula_used if r.tarifa else None,
            error=r.error,
            kind=r.kind,
            position=r.position,
        )
        for r in resultados
    ]
