"""
Configuración de la base de datos con SQLAlchemy async.

Define el engine, la sesión y la dependencia de FastAPI
para inyectar sesiones en los endpoints.
"""

import json
from collections.abc import AsyncGenerator
from functools import partial

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import get_settings

settings = get_settings()

# Los JSON (tags, productos, snapshots del historial) se guardan con acentos legibles
json_serializer = partial(json.dumps, ensure_ascii=False, default=str)

_engine_options: dict = {"echo": settings.DEBUG, "json_serializer": json_serializer}
if settings.database_url.startswith("postgresql"):
    _engine_options.update(pool_size=5, max_overflow=10)

engine = create_async_engine(settings.database_url, **_engine_options)

# Session factory: crea sesiones nuevas con esta configuración
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependencia de FastAPI que provee una sesión de DB.

    Una transacción por request: commit si el endpoint termina bien,
    rollback si lanza cualquier excepción.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
