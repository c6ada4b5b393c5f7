import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .api.routes_formulas import router as formulas_router
from .api.routes_viajes import router as viajes_router
from .core.config import get_settings
from .core.db import init_db

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title=settings.app_name, version="0.1.0", debug=settings.debug)

# CORS abierto para el frontend de administración; restringir orígenes en producción
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return {"status": "ok"}


app.include_router(formulas_router, prefix="/formulas", tags=["formulas"])
app.include_router(viajes_router, prefix="/viajes", tags=["viajes"])


@app.on_event("startup")
def on_startup():
    # Crear tablas si no existen (SQLite)
    init_db()
