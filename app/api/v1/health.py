"""
Health check endpoint.

Sirve para verificar que la API está viva y que la BD responde.
Docker y los balanceadores de carga lo usan
para saber si el contenedor está sano.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db

router = APIRouter()
logger = logging.getLogger(__name__)
settings = get_settings()


@router.get("/health", status_code=200)
async def health_check(db: AsyncSession = Depends(get_db)) -> dict[str, str]:
    """Devuelve el estado de la API y de la base de datos."""
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.error("Health check: BD no disponible: %s", e)
        await db.rollback()
        database = "error"
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "database": database,
    }
