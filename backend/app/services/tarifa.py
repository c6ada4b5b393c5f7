import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from ..models.viaje import TARIFA_CALCULADA, TARIFA_REVISION, Viaje
from .formula_engine import (
    DECIMAL_CONTEXT,
    ZERO,
    BinaryOp,
    EvaluationContext,
    FormulaError,
    Variable,
    build_context,
    compile_formula,
    evaluate,
)
from .formulas import get_applicable_formula

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

# Error de datos del viaje o del lote, no de la fórmula
INVALID_CONTEXT = "InvalidContext"

# Valores de prueba para la vista previa del editor de fórmulas
PREVIEW_CONTEXT = {
    "Valor": 100,
    "Peaje": 10,
    "Palets": 5,
    "Distancia": 50,
    "Peso": 1000,
    "Volumen": 20,
}

# Atributo del viaje -> variable de la fórmula
VIAJE_FIELDS = {
    "palets": "palets",
    "distancia": "distancia",
    "peso": "peso",
    "volumen": "volumen",
    "tiempo": "tiempo",
    "combustible": "combustible",
    "peaje": "peaje",
    "tarifa_base": "tarifaBase",
    "multiplicador": "multiplicador",
}


@dataclass(frozen=True)
class TarifaCalculada:
    total: Decimal
    tarifa_base: Decimal
    peaje: Decimal
    formula_used: str


@dataclass(frozen=True)
class ResultadoLote:
    index: int
    tarifa: Optional[TarifaCalculada] = None
    error: Optional[str] = None
    kind: Optional[str] = None
    position: Optional[int] = None


def _round_cents(value: Decimal) -> Decimal:
    # La precisión crece con la magnitud para que quantize no falle con totales grandes
    context = Context(prec=max(28, value.adjusted() + 4), rounding=ROUND_HALF_UP)
    return value.quantize(CENTS, context=context)


def context_from_viaje(viaje: Viaje) -> EvaluationContext:
    return build_context(
        {variable: getattr(viaje, attr, None) for attr, variable in VIAJE_FIELDS.items()}
    )


def _peaje_component(tree, contexto: EvaluationContext) -> Decimal:
    # Solo se separa el peaje cuando la fórmula termina en "+ Peaje"
    if (
        isinstance(tree, BinaryOp)
        and tree.op == "+"
        and isinstance(tree.right, Variable)
        and tree.right.name == "peaje"
    ):
        return contexto["peaje"]
    return ZERO


def calcular_tarifa(
    formula: str, contexto: Optional[Mapping[str, object]] = None
) -> TarifaCalculada:
    """Evalúa la fórmula y desglosa el total en tarifa base y peaje.

    Lanza ``FormulaError`` si la fórmula no compila o divide por cero.
    """
    compiled = compile_formula(formula)
    contexto = build_context(contexto)
    total = evaluate(compiled, contexto)
    peaje = _peaje_component(compiled.tree, contexto)
    return TarifaCalculada(
        total=_round_cents(total),
        tarifa_base=_round_cents(DECIMAL_CONTEXT.subtract(total, peaje)),
        peaje=_round_cents(peaje),
        formula_used=compiled.source,
    )


def _marcar_revision(viaje: Viaje, kind: str, message: str) -> None:
    logger.warning(
        "Tarifa del viaje %s marcada para revisión (%s): %s", viaje.id, kind, message
    )
    viaje.tarifa_total = None
    viaje.tarifa_neta = None
    viaje.peaje_cobrado = None
    viaje.tarifa_estado = TARIFA_REVISION
    viaje.tarifa_error = message


def aplicar_tarifa(db: Session, viaje: Viaje) -> Viaje:
    """Calcula y guarda la tarifa del viaje.

    Un error en la fórmula o un dato del viaje fuera de rango no interrumpe
    el guardado: el viaje queda sin tarifa y marcado para revisión manual.
    """
    formula, definicion = get_applicable_formula(
        db, viaje.cliente_id, viaje.tipo_unidad, viaje.fecha
    )
    viaje.formula_usada = formula
    try:
        tarifa = calcular_tarifa(formula, context_from_viaje(viaje))
    except FormulaError as e:
        _marcar_revision(viaje, e.kind.value, e.message)
    except ValueError as e:
        _marcar_revision(viaje, INVALID_CONTEXT, str(e))
    else:
        viaje.tarifa_total = float(tarifa.total)
        viaje.tarifa_neta = float(tarifa.tarifa_base)
        viaje.peaje_cobrado = float(tarifa.peaje)
        viaje.tarifa_estado = TARIFA_CALCULADA
        viaje.tarifa_error = None
        logger.debug(
            "Tarifa del viaje %s: %s (fórmula %s%s)",
            viaje.id,
            tarifa.total,
            formula,
            "" if definicion is not None else ", estándar",
        )
    db.commit()
    return viaje


def calcular_lote(
    items: Iterable[Tuple[str, Optional[Mapping[str, object]]]]
) -> List[ResultadoLote]:
    """Evalúa pares (fórmula, contexto) independientes entre sí."""
    resultados: List[ResultadoLote] = []
    for index, (formula, contexto) in enumerate(items):
        try:
            resultados.append(ResultadoLote(index, tarifa=calcular_tarifa(formula, contexto)))
        except FormulaError as e:
            resultados.append(
                ResultadoLote(index, error=e.message, kind=e.kind.value, position=e.position)
            )
        except ValueError as e:
            resultados.append(ResultadoLote(index, error=str(e), kind=INVALID_CONTEXT))
    return resultados
