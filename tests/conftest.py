"""
Fixtures de Pytest para tests de VentasCRM.

Estrategia:
- Cada test tiene su propia BD SQLite en memoria (StaticPool: una sola
  conexión compartida) con las tablas recién creadas
- Override de get_db para que la app use el engine de test
- Usuarios de todos los roles con su token listos para usar
- Un rate limiter en memoria nuevo por test
"""

import os

# Antes de importar la app: la configuración se lee una sola vez
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["ENVIRONMENT"] = "test"

from collections.abc import AsyncGenerator, Awaitable, Callable  # noqa: E402
from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.database import get_db, json_serializer  # noqa: E402
from app.main import app  # noqa: E402
from app.models.base import Base, utcnow  # noqa: E402
from app.models.client import Client  # noqa: E402
from app.models.pipeline import PipelineItem  # noqa: E402
from app.models.task import Task  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402
from app.security import create_access_token, hash_password  # noqa: E402
from app.services.auth_service import CurrentUser  # noqa: E402
from app.services.rate_limit import InMemoryRateLimiter  # noqa: E402

TEST_PASSWORD = "secreto123"


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Engine SQLite en memoria con SAVEPOINT funcionando."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        json_serializer=json_serializer,
    )

    # pysqlite gestiona mal BEGIN/SAVEPOINT: se delega en SQLAlchemy
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(autouse=True)
async def _setup_app_overrides(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[None, None]:
    """Override de get_db y rate limiter nuevo para cada test."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.state.rate_limiter = InMemoryRateLimiter()
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Sesión directa para tests de servicios y para preparar datos."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP que habla directamente con la app FastAPI."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# --- Usuarios ---

UserFactory = Callable[..., Awaitable[User]]


@pytest.fixture
def make_user(db: AsyncSession) -> UserFactory:
    """Crea y persiste un usuario. El email se deriva del nombre si no viene."""

    async def _make(
        firstname: str = "Test",
        lastname: str = "Usuario",
        role: UserRole = UserRole.EMPRENDEDOR,
        email: str | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            email=email or f"{firstname.lower()}.{lastname.lower()}@crm.com",
            password_hash=hash_password(TEST_PASSWORD),
            firstname=firstname,
            lastname=lastname,
            role=role,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def super_admin(make_user: UserFactory) -> User:
    return await make_user("Ana", "Admin", UserRole.SUPER_ADMIN)


@pytest_asyncio.fixture
async def distribuidor(make_user: UserFactory) -> User:
    return await make_user("Dario", "Distribuidor", UserRole.DISTRIBUIDOR)


@pytest_asyncio.fixture
async def emprendedor(make_user: UserFactory) -> User:
    return await make_user("Eva", "Emprendedora", UserRole.EMPRENDEDOR)


@pytest_asyncio.fixture
async def otro_emprendedor(make_user: UserFactory) -> User:
    return await make_user("Oscar", "Otro", UserRole.EMPRENDEDOR)


@pytest_asyncio.fixture
async def asistente(make_user: UserFactory) -> User:
    return await make_user("Alba", "Asistente", UserRole.ASISTENTE)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def as_current(user: User) -> CurrentUser:
    return CurrentUser.from_user(user)


@pytest.fixture
def headers_for() -> Callable[[User], dict[str, str]]:
    """Headers con token para un usuario creado dentro del test."""
    return auth_headers


@pytest.fixture
def current_for() -> Callable[[User], CurrentUser]:
    """CurrentUser de un usuario, para llamar a los servicios directamente."""
    return as_current


@pytest.fixture
def admin_headers(super_admin: User) -> dict[str, str]:
    return auth_headers(super_admin)


@pytest.fixture
def distribuidor_headers(distribuidor: User) -> dict[str, str]:
    return auth_headers(distribuidor)


@pytest.fixture
def emprendedor_headers(emprendedor: User) -> dict[str, str]:
    return auth_headers(emprendedor)


@pytest.fixture
def otro_headers(otro_emprendedor: User) -> dict[str, str]:
    return auth_headers(otro_emprendedor)


@pytest.fixture
def asistente_headers(asistente: User) -> dict[str, str]:
    return auth_headers(asistente)


# --- Datos de prueba ---


@pytest.fixture
def sample_client_data() -> dict:
    """Datos de un cliente válido (camelCase, como los manda el frontend)."""
    return {
        "nombre": "Juan",
        "apellido": "Pérez",
        "email": "juan.perez@correo.com",
        "telefono": "+54911234567",
        "empresa": "Empresa SA",
        "source": "LANDING",
        "etapa": "Prospecto",
        "tags": ["vip", "interesado"],
    }


@pytest.fixture
def make_client(db: AsyncSession) -> Callable[..., Awaitable[Client]]:
    """Inserta un cliente directamente en BD, propiedad de `owner`."""
    counter = {"n": 0}

    async def _make(owner: User, **overrides) -> Client:
        counter["n"] += 1
        n = counter["n"]
        values = {
            "nombre": f"Cliente{n}",
            "apellido": "Prueba",
            "telefono": f"+5400000{n:04d}",
            "email": f"cliente{n}@correo.com",
            "created_by_id": owner.id,
            "assigned_to_id": owner.id,
        }
        values.update(overrides)
        client = Client(**values)
        db.add(client)
        await db.commit()
        return client

    return _make


@pytest.fixture
def make_item(db: AsyncSession) -> Callable[..., Awaitable[PipelineItem]]:
    """Inserta un deal para un cliente, propiedad de `owner`."""

    async def _make(owner: User, client: Client, **overrides) -> PipelineItem:
        values = {
            "client_id": client.id,
            "products": ["Plan Básico"],
            "created_by_id": owner.id,
            "assigned_to_id": owner.id,
        }
        values.update(overrides)
        item = PipelineItem(**values)
        db.add(item)
        await db.commit()
        return item

    return _make


@pytest.fixture
def make_task(db: AsyncSession) -> Callable[..., Awaitable[Task]]:
    """Inserta una tarea con vencimiento relativo a ahora (due_in)."""

    async def _make(owner: User, due_in: timedelta = timedelta(days=1), **overrides) -> Task:
        values = {
            "title": "Llamar al cliente",
            "due_date": utcnow() + due_in,
            "created_by_id": owner.id,
            "assigned_to_id": owner.id,
        }
        values.update(overrides)
        task = Task(**values)
        db.add(task)
        await db.commit()
        return task

    return _make
