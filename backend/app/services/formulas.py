import logging
import uuid
from datetime import date, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models.formula import FormulaCliente
from .formula_engine import compile_formula

logger = logging.getLogger(__name__)

DEFAULT_FORMULA = "Valor * Palets + Peaje"
TIPO_GENERAL = "General"
TIPOS_UNIDAD = ("Sider", "Bitren", TIPO_GENERAL)

ESTADO_FUTURA = "futura"
ESTADO_EXPIRADA = "expirada"
ESTADO_ACTIVA = "activa"


class FormulaVersionError(ValueError):
    pass


class FormulaNotFoundError(LookupError):
    pass


class FormulaOverlapError(FormulaVersionError):
    def __init__(self, message: str, overlapping: FormulaCliente):
        super().__init__(message)
        self.overlapping = overlapping


def _format_vigencia(formula: FormulaCliente) -> str:
    hasta = formula.vigencia_hasta.isoformat() if formula.vigencia_hasta else "Activa"
    return f"{formula.vigencia_desde.isoformat()} - {hasta}"


def _validate_fields(
    tipo_unidad: str, formula: str, desde: date, hasta: Optional[date]
) -> None:
    if tipo_unidad not in TIPOS_UNIDAD:
        raise FormulaVersionError(
            f"Tipo de unidad '{tipo_unidad}' no válido; use {', '.join(TIPOS_UNIDAD)}"
        )
    if hasta is not None and hasta < desde:
        raise FormulaVersionError(
            "La fecha de vigenciaDesde debe ser anterior o igual a vigenciaHasta"
        )
    # FormulaSyntaxError se propaga tal cual para conservar la posición
    compile_formula(formula)


def find_overlap(
    db: Session,
    cliente_id: str,
    tipo_unidad: str,
    desde: date,
    hasta: Optional[date],
    exclude_id: Optional[str] = None,
) -> Optional[FormulaCliente]:
    """Primera versión cuya vigencia [desde, hasta] se cruza con la dada.

    Ambos extremos son inclusivos; ``hasta`` nulo es vigencia abierta.
    """
    query = db.query(FormulaCliente).filter(
        FormulaCliente.cliente_id == cliente_id,
        FormulaCliente.tipo_unidad == tipo_unidad,
        or_(
            FormulaCliente.vigencia_hasta.is_(None),
            FormulaCliente.vigencia_hasta >= desde,
        ),
    )
    if hasta is not None:
        query = query.filter(FormulaCliente.vigencia_desde <= hasta)
    if exclude_id:
        query = query.filter(FormulaCliente.id != exclude_id)
    return query.order_by(FormulaCliente.vigencia_desde).first()


def _ensure_no_overlap(
    db: Session,
    cliente_id: str,
    tipo_unidad: str,
    desde: date,
    hasta: Optional[date],
    exclude_id: Optional[str] = None,
) -> None:
    overlap = find_overlap(db, cliente_id, tipo_unidad, desde, hasta, exclude_id)
    if overlap is not None:
        raise FormulaOverlapError(
            "El período de vigencia se solapa con una fórmula existente "
            f"(ID: {overlap.id}, Vigencia: {_format_vigencia(overlap)})",
            overlap,
        )


def get_formula(db: Session, formula_id: str) -> FormulaCliente:
    formula = db.get(FormulaCliente, formula_id)
    if formula is None:
        raise FormulaNotFoundError("Fórmula no encontrada")
    return formula


def create_formula(
    db: Session,
    cliente_id: str,
    tipo_unidad: str,
    formula: str,
    vigencia_desde: date,
    vigencia_hasta: Optional[date] = None,
) -> FormulaCliente:
    _validate_fields(tipo_unidad, formula, vigencia_desde, vigencia_hasta)
    _ensure_no_overlap(db, cliente_id, tipo_unidad, vigencia_desde, vigencia_hasta)

    record = FormulaCliente(
        id=str(uuid.uuid4()),
        cliente_id=cliente_id,
        tipo_unidad=tipo_unidad,
        formula=formula,
        vigencia_desde=vigencia_desde,
        vigencia_hasta=vigencia_hasta,
    )
    db.add(record)
    db.commit()
    logger.info(
        "Nueva fórmula creada para cliente %s, tipo %s (%s)",
        cliente_id,
        tipo_unidad,
        _format_vigencia(record),
    )
    return record


def supersede_formula(
    db: Session,
    cliente_id: str,
    tipo_unidad: str,
    formula: str,
    vigencia_desde: date,
) -> FormulaCliente:
    """Cierra la versión abierta el día anterior y crea la nueva versión abierta."""
    _validate_fields(tipo_unidad, formula, vigencia_desde, None)

    abierta = (
        db.query(FormulaCliente)
        .filter(
            FormulaCliente.cliente_id == cliente_id,
            FormulaCliente.tipo_unidad == tipo_unidad,
            FormulaCliente.vigencia_hasta.is_(None),
        )
        .first()
    )
    if abierta is not None:
        if abierta.vigencia_desde >= vigencia_desde:
            raise FormulaOverlapError(
                "La nueva vigencia debe comenzar después de la fórmula activa "
                f"(ID: {abierta.id}, Vigencia: {_format_vigencia(abierta)})",
                abierta,
            )
        abierta.vigencia_hasta = vigencia_desde - timedelta(days=1)

    try:
        _ensure_no_overlap(
            db,
            cliente_id,
            tipo_unidad,
            vigencia_desde,
            None,
            exclude_id=abierta.id if abierta is not None else None,
        )
    except FormulaOverlapError:
        db.rollback()
        raise

    record = FormulaCliente(
        id=str(uuid.uuid4()),
        cliente_id=cliente_id,
        tipo_unidad=tipo_unidad,
        formula=formula,
        vigencia_desde=vigencia_desde,
        vigencia_hasta=None,
    )
    db.add(record)
    db.commit()
    if abierta is not None:
        logger.info(
            "Fórmula %s cerrada al %s, reemplazada por %s",
            abierta.id,
            abierta.vigencia_hasta.isoformat(),
            record.id,
        )
    else:
        logger.info(
            "Primera fórmula para cliente %s, tipo %s", cliente_id, tipo_unidad
        )
    return record


_UNSET = object()


def update_formula(
    db: Session,
    formula_id: str,
    formula: Optional[str] = None,
    vigencia_desde: Optional[date] = None,
    vigencia_hasta=_UNSET,
) -> FormulaCliente:
    """Actualiza campos; pasar ``vigencia_hasta=None`` deja la vigencia abierta."""
    record = get_formula(db, formula_id)

    nueva_formula = record.formula if formula is None else formula
    desde = vigencia_desde or record.vigencia_desde
    hasta = record.vigencia_hasta if vigencia_hasta is _UNSET else vigencia_hasta

    _validate_fields(record.tipo_unidad, nueva_formula, desde, hasta)
    _ensure_no_overlap(
        db, record.cliente_id, record.tipo_unidad, desde, hasta, exclude_id=record.id
    )

    record.formula = nueva_formula
    record.vigencia_desde = desde
    record.vigencia_hasta = hasta
    db.commit()
    logger.info("Fórmula %s actualizada (%s)", record.id, _format_vigencia(record))
    return record


def _vigente_en(fecha: date):
    return (
        FormulaCliente.vigencia_desde <= fecha,
        or_(
            FormulaCliente.vigencia_hasta.is_(None),
            FormulaCliente.vigencia_hasta >= fecha,
        ),
    )


def list_formulas(
    db: Session,
    cliente_id: str,
    tipo_unidad: Optional[str] = None,
    fecha: Optional[date] = None,
) -> List[FormulaCliente]:
    query = db.query(FormulaCliente).filter(FormulaCliente.cliente_id == cliente_id)
    if tipo_unidad:
        query = query.filter(FormulaCliente.tipo_unidad == tipo_unidad)
    if fecha:
        query = query.filter(*_vigente_en(fecha))
    formulas = query.order_by(
        FormulaCliente.tipo_unidad, FormulaCliente.vigencia_desde.desc()
    ).all()
    logger.debug("Encontradas %d fórmulas para cliente %s", len(formulas), cliente_id)
    return formulas


def estado_vigencia(formula: FormulaCliente, hoy: Optional[date] = None) -> str:
    hoy = hoy or date.today()
    if formula.vigencia_desde > hoy:
        return ESTADO_FUTURA
    if formula.vigencia_hasta is not None and formula.vigencia_hasta < hoy:
        return ESTADO_EXPIRADA
    return ESTADO_ACTIVA


def _find_vigente(
    db: Session, cliente_id: str, tipo_unidad: str, fecha: date
) -> Optional[FormulaCliente]:
    return (
        db.query(FormulaCliente)
        .filter(
            FormulaCliente.cliente_id == cliente_id,
            FormulaCliente.tipo_unidad == tipo_unidad,
            *_vigente_en(fecha),
        )
        .order_by(FormulaCliente.vigencia_desde.desc())
        .first()
    )


def get_applicable_formula(
    db: Session,
    cliente_id: Optional[str],
    tipo_unidad: Optional[str],
    fecha: date,
) -> Tuple[str, Optional[FormulaCliente]]:
    """Fórmula aplicable: tipo exacto, luego 'General', luego la estándar."""
    if not cliente_id:
        logger.warning("clienteId no proporcionado; se usa la fórmula estándar")
        return DEFAULT_FORMULA, None
    if not tipo_unidad:
        logger.warning("tipoUnidad no proporcionado, asumiendo Sider")
        tipo_unidad = "Sider"

    candidatos = [tipo_unidad]
    if tipo_unidad != TIPO_GENERAL:
        candidatos.append(TIPO_GENERAL)

    for tipo in candidatos:
        record = _find_vigente(db, cliente_id, tipo, fecha)
        if record is not None:
            logger.debug(
                "Fórmula %s para cliente %s, tipo %s, fecha %s: %s",
                record.id,
                cliente_id,
                tipo,
                fecha.isoformat(),
                record.formula,
            )
            return record.formula, record

    logger.debug(
        "Sin fórmula personalizada para cliente %s, tipo %s, fecha %s; se usa la estándar",
        cliente_id,
        tipo_unidad,
        fecha.isoformat(),
    )
    return DEFAULT_FORMULA, None
