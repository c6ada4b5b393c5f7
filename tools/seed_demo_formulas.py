import sys
import uuid
from datetime import date
from pathlib import Path

# Add repo root to path so we can import backend modules
sys.path.append(str(Path(__file__).parent.parent))

from backend.app.core.db import SessionLocal, init_db
from backend.app.models.viaje import Viaje
from backend.app.services.formulas import (
    FormulaVersionError,
    create_formula,
    supersede_formula,
)
from backend.app.services.formula_engine import FormulaError
from backend.app.services.tarifa import aplicar_tarifa

DEMO_CLIENTE = "cliente-demo"

# Historial de fórmulas del cliente demo
DEMO_FORMULAS = [
    {
        "tipo_unidad": "Sider",
        "formula": "Valor * Palets + Peaje",
        "vigencia_desde": date(2024, 1, 1),
    },
    {
        "tipo_unidad": "Sider",
        "formula": "Valor * Palets * 1,05 + Peaje",
        "vigencia_desde": date(2025, 1, 1),
        "supersede": True,
    },
    {
        "tipo_unidad": "Bitren",
        "formula": "(Valor + Distancia * 2) * Palets + Peaje",
        "vigencia_desde": date(2024, 6, 1),
    },
]

DEMO_VIAJES = [
    {"tipo_unidad": "Sider", "fecha": date(2024, 3, 10), "palets": 10, "tarifa_base": 100, "peaje": 500},
    {"tipo_unidad": "Sider", "fecha": date(2025, 2, 3), "palets": 12, "tarifa_base": 100, "peaje": 500},
    {"tipo_unidad": "Bitren", "fecha": date(2024, 7, 15), "palets": 20, "tarifa_base": 80, "distancia": 120, "peaje": 900},
    {"tipo_unidad": "General", "fecha": date(2024, 7, 15), "palets": 4, "tarifa_base": 150},
]


def seed_data():
    print("Initializing DB...")
    init_db()
    db = SessionLocal()

    for item in DEMO_FORMULAS:
        try:
            if item.get("supersede"):
                record = supersede_formula(
                    db,
                    DEMO_CLIENTE,
                    item["tipo_unidad"],
                    item["formula"],
                    item["vigencia_desde"],
                )
            else:
                record = create_formula(
                    db,
                    DEMO_CLIENTE,
                    item["tipo_unidad"],
                    item["formula"],
                    item["vigencia_desde"],
                )
            print(f"  [OK] {record.tipo_unidad}: {record.formula} desde {record.vigencia_desde}")
        except (FormulaError, FormulaVersionError) as e:
            # Re-ejecutar el seed choca con las vigencias ya cargadas
            print(f"  [WARN] {item['tipo_unidad']}: {e}")

    for item in DEMO_VIAJES:
        viaje = Viaje(id=str(uuid.uuid4()), cliente_id=DEMO_CLIENTE, **item)
        db.add(viaje)
        db.commit()
        aplicar_tarifa(db, viaje)
        print(
            f"  [OK] Viaje {viaje.tipo_unidad} {viaje.fecha}: "
            f"{viaje.tarifa_total} ({viaje.tarifa_estado}, {viaje.formula_usada})"
        )

    db.close()
    print("Seeding complete.")


if __name__ == "__main__":
    seed_data()
