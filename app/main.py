"""
Entry point de la aplicación FastAPI.

Crea la app, registra routers, handlers de errores y middlewares.
"""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.router import api_router
from app.config import get_settings
from app.database import engine
from app.errors import register_exception_handlers
from app.logging_config import configure_logging
from app.services.rate_limit import build_rate_limiter, close_redis

settings = get_settings()
configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Gestiona el ciclo de vida de la aplicación.

    - startup: solo deja constancia en el log
    - shutdown: cierra el pool de la BD y el cliente Redis
    """
    # --- Startup ---
    logger.info("%s v%s arrancando (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
    yield
    # --- Shutdown ---
    await close_redis()
    await engine.dispose()
    logger.info("%s cerrándose", settings.APP_NAME)


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="CRM de ventas: clientes, pipeline comercial y tareas",
    lifespan=lifespan,
)

# El limitador vive en app.state para que los tests puedan sustituirlo
app.state.rate_limiter = build_rate_limiter(settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Método, ruta, status y duración de cada request."""
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s -> %s (%.1f ms)",
        request.method, request.url.path, response.status_code, elapsed_ms,
    )
    return response


# Registrar routers
app.include_router(api_router, prefix=settings.API_PREFIX)
