import unittest

from fastapi.testclient import TestClient

from backend.app.main import app

from .helpers import fresh_session


class TestApi(unittest.TestCase):
    def setUp(self):
        fresh_session().close()
        self.client = TestClient(app)

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_validate_formula_valida(self):
        resp = self.client.post("/formulas/validate", json={"formula": "Valor * Palets + Peaje"})
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertTrue(data["valida"])
        # Contexto de prueba: Valor 100, Palets 5, Peaje 10
        self.assertEqual(data["resultado"], 510.0)
        self.assertEqual(data["analisis"]["variables"], ["palets", "peaje", "tarifaBase"])
        self.assertEqual(data["analisis"]["complejidad"]["nivel"], "Baja")
        self.assertEqual(data["analisis"]["advertencias"], [])

    def test_validate_error_en_linea(self):
        resp = self.client.post("/formulas/validate", json={"formula": "Valor * foo"})
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertFalse(data["valida"])
        self.assertEqual(data["error"]["kind"], "SyntaxError")
        self.assertEqual(data["error"]["position"], 8)

    def test_validate_con_contexto_propio(self):
        resp = self.client.post(
            "/formulas/validate",
            json={"formula": "Valor / Multiplicador", "contexto": {"Multiplicador": 0}},
        )
        data = resp.json()
        self.assertFalse(data["valida"])
        self.assertEqual(data["error"]["kind"], "DivisionByZero")
        self.assertIn(
            "Para divisiones, considere validar que el divisor no sea cero",
            data["analisis"]["sugerencias"],
        )

    def test_validate_advierte_division_por_cero_literal(self):
        resp = self.client.post("/formulas/validate", json={"formula": "Valor / 0"})
        data = resp.json()
        self.assertFalse(data["valida"])
        self.assertEqual(data["error"]["position"], 6)
        self.assertEqual(
            data["analisis"]["advertencias"],
            ["Posible división por cero detectada en la posición 6"],
        )

    def test_evaluate_resultado_fuera_de_rango(self):
        resp = self.client.post(
            "/formulas/evaluate",
            json={"formula": "*".join(["peso"] * 22), "contexto": {"peso": 1e15}},
        )
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["detail"]["kind"], "Overflow")

    def test_evaluate(self):
        resp = self.client.post("/formulas/evaluate", json={"formula": "2 + 3 * 4"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"value": 14.0, "formulaUsed": "2 + 3 * 4"})

    def test_evaluate_division_por_cero(self):
        resp = self.client.post(
            "/formulas/evaluate",
            json={"formula": "10 / multiplicador", "contexto": {"multiplicador": 0}},
        )
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["detail"]["kind"], "DivisionByZero")

    def test_crud_formulas_y_solapamiento(self):
        payload = {
            "clienteId": "c1",
            "tipoUnidad": "Sider",
            "formula": "Valor * Palets + Peaje",
            "vigenciaDesde": "2024-01-01",
        }
        resp = self.client.post("/formulas/", json=payload)
        self.assertEqual(resp.status_code, 201)
        creada = resp.json()
        self.assertIsNone(creada["vigenciaHasta"])

        resp = self.client.post("/formulas/", json={**payload, "vigenciaDesde": "2024-05-01"})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["detail"]["overlappingFormulaId"], creada["id"])

        resp = self.client.post(
            "/formulas/supersede",
            json={**payload, "formula": "Valor * Palets * 2 + Peaje", "vigenciaDesde": "2024-05-01"},
        )
        self.assertEqual(resp.status_code, 201)

        anterior = self.client.get(f"/formulas/{creada['id']}").json()
        self.assertEqual(anterior["vigenciaHasta"], "2024-04-30")

        historial = self.client.get("/formulas/cliente/c1").json()
        self.assertEqual(len(historial), 2)
        self.assertEqual(historial[0]["vigenciaDesde"], "2024-05-01")

        aplicable = self.client.get(
            "/formulas/aplicable",
            params={"clienteId": "c1", "tipoUnidad": "Sider", "fecha": "2024-03-01"},
        ).json()
        self.assertEqual(aplicable["formula"], "Valor * Palets + Peaje")
        self.assertFalse(aplicable["esDefault"])

    def test_crear_formula_con_error_de_sintaxis(self):
        resp = self.client.post(
            "/formulas/",
            json={
                "clienteId": "c1",
                "tipoUnidad": "Sider",
                "formula": "Valor * (Palets",
                "vigenciaDesde": "2024-01-01",
            },
        )
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["detail"]["position"], 8)

    def test_patch_reabre_vigencia(self):
        creada = self.client.post(
            "/formulas/",
            json={
                "clienteId": "c2",
                "tipoUnidad": "Bitren",
                "formula": "Valor",
                "vigenciaDesde": "2024-01-01",
                "vigenciaHasta": "2024-02-01",
            },
        ).json()
        resp = self.client.patch(f"/formulas/{creada['id']}", json={"vigenciaHasta": None})
        self.assertEqual(resp.status_code, 200)
        self.assertIsNone(resp.json()["vigenciaHasta"])

    def test_patch_rechaza_formula_vacia(self):
        creada = self.client.post(
            "/formulas/",
            json={
                "clienteId": "c5",
                "tipoUnidad": "Sider",
                "formula": "Valor * 2",
                "vigenciaDesde": "2024-01-01",
            },
        ).json()
        resp = self.client.patch(f"/formulas/{creada['id']}", json={"formula": ""})
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(self.client.get(f"/formulas/{creada['id']}").json()["formula"], "Valor * 2")

    def test_formula_inexistente(self):
        self.assertEqual(self.client.get("/formulas/no-existe").status_code, 404)

    def test_viaje_con_formula_estandar(self):
        resp = self.client.post(
            "/viajes/",
            json={
                "clienteId": "c9",
                "fecha": "2024-03-01",
                "palets": 10,
                "tarifaBase": 100,
                "peaje": 500,
            },
        )
        self.assertEqual(resp.status_code, 201)
        data = resp.json()
        self.assertEqual(data["tarifaTotal"], 1500.0)
        self.assertEqual(data["tarifaEstado"], "calculada")
        self.assertEqual(data["tarifaNeta"], 1000.0)
        self.assertEqual(data["peaje"], 500.0)
        self.assertNotIn("tarifaBase", data)

    def test_viaje_con_total_fuera_de_rango_queda_en_revision(self):
        self.client.post(
            "/formulas/",
            json={
                "clienteId": "c4",
                "tipoUnidad": "Sider",
                "formula": "*".join(["Peso"] * 27),
                "vigenciaDesde": "2024-01-01",
            },
        )
        resp = self.client.post(
            "/viajes/",
            json={"clienteId": "c4", "tipoUnidad": "Sider", "fecha": "2024-03-01", "peso": 1e12},
        )
        self.assertEqual(resp.status_code, 201)
        data = resp.json()
        self.assertEqual(data["tarifaEstado"], "revision")
        self.assertIsNone(data["tarifaTotal"])

    def test_viaje_se_guarda_aunque_la_formula_falle(self):
        self.client.post(
            "/formulas/",
            json={
                "clienteId": "c3",
                "tipoUnidad": "General",
                "formula": "Valor / multiplicador",
                "vigenciaDesde": "2024-01-01",
            },
        )
        resp = self.client.post(
            "/viajes/",
            json={"clienteId": "c3", "tipoUnidad": "Bitren", "fecha": "2024-03-01", "tarifaBase": 10},
        )
        self.assertEqual(resp.status_code, 201)
        data = resp.json()
        self.assertEqual(data["tarifaEstado"], "revision")
        self.assertIsNone(data["tarifaTotal"])

        guardado = self.client.get(f"/viajes/{data['id']}")
        self.assertEqual(guardado.status_code, 200)

        resp = self.client.post(f"/viajes/{data['id']}/recalcular")
        self.assertEqual(resp.json()["tarifaEstado"], "revision")

    def test_lote(self):
        resp = self.client.post(
            "/viajes/tarifas/lote",
            json={
                "items": [
                    {"formula": "Valor * Palets + Peaje", "contexto": {"Valor": 100, "Palets": 10, "Peaje": 500}},
                    {"formula": "Valor +", "contexto": {}},
                ]
            },
        )
        self.assertEqual(resp.status_code, 200)
        primero, segundo = resp.json()
        self.assertEqual(primero["total"], 1500.0)
        self.assertEqual(primero["peaje"], 500.0)
        self.assertEqual(primero["tarifaNeta"], 1000.0)
        self.assertEqual(segundo["kind"], "SyntaxError")
        self.assertEqual(segundo["position"], 7)


if __name__ == "__main__":
    unittest.main()
