"""
Tests para los endpoints de autenticación.

Naming convention: test_<acción>_<escenario>_<resultado>
Cada test es independiente y no depende de otros.
"""

from datetime import timedelta

from httpx import AsyncClient
from jose import jwt

from app.config import get_settings
from app.models.base import utcnow
from app.models.user import User
from app.security import create_access_token

PASSWORD = "secreto123"


# ============================================
# POST /api/auth/register — Registro
# ============================================


class TestRegister:
    """Tests para el auto-registro."""

    async def test_register_valid_data_returns_201_with_token(self, client: AsyncClient) -> None:
        """Registro válido devuelve el usuario (sin hash) y un token."""
        response = await client.post(
            "/api/auth/register",
            json={
                "email": "Nueva@CRM.com",
                "password": "clave123",
                "firstname": "Nueva",
                "lastname": "Usuaria",
            },
        )
        assert response.status_code == 201

        data = response.json()
        assert data["token"]
        assert data["user"]["email"] == "nueva@crm.com"
        assert data["user"]["role"] == "EMPRENDEDOR"
        assert data["user"]["isActive"] is True
        assert "passwordHash" not in data["user"]
        assert "password" not in data["user"]

    async def test_register_duplicate_email_returns_400(
        self, client: AsyncClient, emprendedor: User
    ) -> None:
        """Email ya registrado devuelve 400."""
        response = await client.post(
            "/api/auth/register",
            json={
                "email": emprendedor.email,
                "password": "clave123",
                "firstname": "Otra",
                "lastname": "Persona",
            },
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Ya existe un usuario con este email"

    async def test_register_privileged_role_returns_400(self, client: AsyncClient) -> None:
        """El auto-registro no permite elegir SUPER_ADMIN."""
        response = await client.post(
            "/api/auth/register",
            json={
                "email": "listo@crm.com",
                "password": "clave123",
                "firstname": "Muy",
                "lastname": "Listo",
                "role": "SUPER_ADMIN",
            },
        )
        assert response.status_code == 400
        assert response.json()["details"][0]["field"] == "role"

    async def test_register_invalid_fields_lists_every_error(self, client: AsyncClient) -> None:
        """Todos los campos inválidos aparecen en details."""
        response = await client.post(
            "/api/auth/register",
            json={"email": "no-es-email", "password": "123", "firstname": "A", "lastname": "B"},
        )
        assert response.status_code == 400

        body = response.json()
        assert body["error"] == "Datos de entrada inválidos"
        fields = {detail["field"] for detail in body["details"]}
        assert {"email", "password", "firstname", "lastname"} <= fields


# ============================================
# POST /api/auth/login — Login
# ============================================


class TestLogin:
    """Tests para el inicio de sesión."""

    async def test_login_valid_credentials_returns_token(
        self, client: AsyncClient, emprendedor: User
    ) -> None:
        """Credenciales correctas devuelven un token con sub = id del usuario."""
        response = await client.post(
            "/api/auth/login", json={"email": emprendedor.email, "password": PASSWORD}
        )
        assert response.status_code == 200

        data = response.json()
        assert data["message"] == "Login exitoso"
        settings = get_settings()
        claims = jwt.decode(data["token"], settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        assert claims["sub"] == str(emprendedor.id)

    async def test_login_wrong_password_returns_401(
        self, client: AsyncClient, emprendedor: User
    ) -> None:
        """Contraseña incorrecta devuelve 401."""
        response = await client.post(
            "/api/auth/login", json={"email": emprendedor.email, "password": "incorrecta"}
        )
        assert response.status_code == 401
        assert response.json()["error"] == "Credenciales inválidas"

    async def test_login_unknown_email_returns_401(self, client: AsyncClient) -> None:
        """Email desconocido devuelve el mismo 401 que una contraseña incorrecta."""
        response = await client.post(
            "/api/auth/login", json={"email": "nadie@crm.com", "password": PASSWORD}
        )
        assert response.status_code == 401
        assert response.json()["error"] == "Credenciales inválidas"

    async def test_login_inactive_user_returns_401(self, client: AsyncClient, make_user) -> None:
        """Un usuario desactivado no puede iniciar sesión."""
        user = await make_user("Ines", "Inactiva", is_active=False)
        response = await client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD})
        assert response.status_code == 401

    async def test_login_too_many_attempts_returns_429(
        self, client: AsyncClient, emprendedor: User
    ) -> None:
        """Superado el límite por IP, devuelve 429 con retryAfter."""
        payload = {"email": emprendedor.email, "password": "incorrecta"}
        for _ in range(20):
            await client.post("/api/auth/login", json=payload)

        response = await client.post("/api/auth/login", json=payload)
        assert response.status_code == 429
        assert response.json()["retryAfter"] > 0
        assert "retry-after" in response.headers


# ============================================
# Autenticación de requests (Bearer)
# ============================================


class TestAuthenticate:
    """Tests para la validación del token en cada request."""

    async def test_profile_without_token_returns_401(self, client: AsyncClient) -> None:
        """Sin header Authorization devuelve 401."""
        response = await client.get("/api/auth/profile")
        assert response.status_code == 401
        assert response.json()["error"] == "Token de acceso requerido"

    async def test_profile_garbage_token_returns_401(self, client: AsyncClient) -> None:
        """Un token malformado devuelve 401 Token inválido."""
        response = await client.get("/api/auth/profile", headers={"Authorization": "Bearer basura"})
        assert response.status_code == 401
        assert response.json()["error"] == "Token inválido"

    async def test_profile_expired_token_returns_401(
        self, client: AsyncClient, emprendedor: User
    ) -> None:
        """Un token caducado devuelve 401 Token expirado."""
        token = create_access_token(emprendedor.id, expires_minutes=-1)
        response = await client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["error"] == "Token expirado"

    async def test_profile_wrong_secret_returns_401(
        self, client: AsyncClient, emprendedor: User
    ) -> None:
        """Un token firmado con otro secreto es inválido."""
        token = jwt.encode(
            {"sub": str(emprendedor.id), "exp": utcnow() + timedelta(hours=1)},
            "otro-secreto",
            algorithm="HS256",
        )
        response = await client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["error"] == "Token inválido"

    async def test_profile_deleted_user_returns_401(self, client: AsyncClient) -> None:
        """Token válido de un usuario que no existe devuelve 401."""
        token = create_access_token(9999)
        response = await client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["error"] == "Usuario no encontrado"

    async def test_profile_deactivated_user_returns_401(
        self, client: AsyncClient, make_user, headers_for
    ) -> None:
        """Un usuario desactivado con token aún vigente recibe 401."""
        user = await make_user("Dani", "Desactivado", is_active=False)
        response = await client.get("/api/auth/profile", headers=headers_for(user))
        assert response.status_code == 401
        assert response.json()["error"] == "Usuario desactivado"


# ============================================
# Perfil propio
# ============================================


class TestProfile:
    """Tests para perfil, cambio de contraseña, verify y logout."""

    async def test_get_profile_returns_current_user(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict
    ) -> None:
        response = await client.get("/api/auth/profile", headers=emprendedor_headers)
        assert response.status_code == 200
        assert response.json()["user"]["id"] == emprendedor.id

    async def test_update_profile_changes_names(
        self, client: AsyncClient, emprendedor_headers: dict
    ) -> None:
        """Nombre, apellido y teléfono se actualizan."""
        response = await client.put(
            "/api/auth/profile",
            json={"firstname": "Evangelina", "phone": "+5491100000"},
            headers=emprendedor_headers,
        )
        assert response.status_code == 200

        user = response.json()["user"]
        assert user["firstname"] == "Evangelina"
        assert user["lastname"] == "Emprendedora"
        assert user["phone"] == "+5491100000"

    async def test_change_password_then_login_with_new_password(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict
    ) -> None:
        """Tras cambiar la contraseña, la nueva sirve para entrar y la vieja no."""
        response = await client.put(
            "/api/auth/change-password",
            json={"currentPassword": PASSWORD, "newPassword": "nueva456"},
            headers=emprendedor_headers,
        )
        assert response.status_code == 200

        ok = await client.post("/api/auth/login", json={"email": emprendedor.email, "password": "nueva456"})
        old = await client.post("/api/auth/login", json={"email": emprendedor.email, "password": PASSWORD})
        assert ok.status_code == 200
        assert old.status_code == 401

    async def test_change_password_wrong_current_returns_400(
        self, client: AsyncClient, emprendedor_headers: dict
    ) -> None:
        response = await client.put(
            "/api/auth/change-password",
            json={"currentPassword": "incorrecta", "newPassword": "nueva456"},
            headers=emprendedor_headers,
        )
        assert response.status_code == 400
        assert response.json()["details"][0]["message"] == "Contraseña actual incorrecta"

    async def test_verify_valid_token_returns_valid_true(
        self, client: AsyncClient, emprendedor_headers: dict
    ) -> None:
        response = await client.get("/api/auth/verify", headers=emprendedor_headers)
        assert response.status_code == 200
        assert response.json()["valid"] is True

    async def test_logout_returns_message(self, client: AsyncClient, emprendedor_headers: dict) -> None:
        response = await client.post("/api/auth/logout", headers=emprendedor_headers)
        assert response.status_code == 200
        assert response.json()["message"] == "Sesión cerrada exitosamente"


# ============================================
# Errores genéricos
# ============================================


class TestErrorEnvelope:
    """El sobre de error es el mismo para cualquier ruta."""

    async def test_unknown_route_returns_404_envelope(self, client: AsyncClient) -> None:
        response = await client.get("/api/no-existe")
        assert response.status_code == 404
        assert response.json() == {"error": "Ruta no encontrada"}

    async def test_health_returns_healthy(self, client: AsyncClient) -> None:
        response = await client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
