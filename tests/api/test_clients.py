"""
Tests para los endpoints de clientes.

Naming convention: test_<acción>_<escenario>_<resultado>
Cada test es independiente y no depende de otros.
"""

import io

import pandas as pd
from httpx import AsyncClient

from app.models.pipeline import PipelineStatus
from app.models.user import User
from app.services.excel import import_template_xlsx

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ============================================
# POST /api/clients — Crear cliente
# ============================================


class TestCreateClient:
    """Tests para la creación de clientes."""

    async def test_create_client_success_forces_creator_and_assignee(
        self,
        client: AsyncClient,
        emprendedor: User,
        emprendedor_headers: dict,
        sample_client_data: dict,
    ) -> None:
        """createdById es siempre el usuario; assignedToId por defecto también."""
        response = await client.post(
            "/api/clients",
            json={**sample_client_data, "createdById": 9999},
            headers=emprendedor_headers,
        )
        assert response.status_code == 201

        data = response.json()
        assert data["nombre"] == "Juan"
        assert data["createdById"] == emprendedor.id
        assert data["assignedToId"] == emprendedor.id
        assert data["estado"] == "ACTIVO"
        assert data["tags"] == ["vip", "interesado"]
        assert data["assignedTo"]["email"] == emprendedor.email

    async def test_create_client_duplicate_phone_returns_400_with_existing(
        self,
        client: AsyncClient,
        emprendedor_headers: dict,
        sample_client_data: dict,
    ) -> None:
        """Mismo teléfono -> 400 con el cliente existente."""
        first = await client.post("/api/clients", json=sample_client_data, headers=emprendedor_headers)
        response = await client.post(
            "/api/clients",
            json={**sample_client_data, "email": "otro@correo.com"},
            headers=emprendedor_headers,
        )
        assert response.status_code == 400

        existing = response.json()["existingClient"]
        assert existing == {"id": first.json()["id"], "nombre": "Juan", "apellido": "Pérez"}

    async def test_create_client_email_used_by_other_owner_returns_400(
        self,
        client: AsyncClient,
        otro_emprendedor: User,
        emprendedor_headers: dict,
        sample_client_data: dict,
        make_client,
    ) -> None:
        """La unicidad al crear es global, no depende de quién sea el dueño."""
        await make_client(otro_emprendedor, email=sample_client_data["email"])
        response = await client.post("/api/clients", json=sample_client_data, headers=emprendedor_headers)
        assert response.status_code == 400
        assert "existingClient" in response.json()

    async def test_create_client_short_name_returns_400(
        self, client: AsyncClient, emprendedor_headers: dict, sample_client_data: dict
    ) -> None:
        response = await client.post(
            "/api/clients",
            json={**sample_client_data, "nombre": "J"},
            headers=emprendedor_headers,
        )
        assert response.status_code == 400
        assert response.json()["details"][0]["field"] == "nombre"

    async def test_create_client_without_token_returns_401(
        self, client: AsyncClient, sample_client_data: dict
    ) -> None:
        response = await client.post("/api/clients", json=sample_client_data)
        assert response.status_code == 401


# ============================================
# GET /api/clients — Listado, visibilidad y filtros
# ============================================


class TestListClients:
    """Tests para el listado con visibilidad por rol."""

    async def test_list_clients_emprendedor_sees_only_own(
        self,
        client: AsyncClient,
        emprendedor: User,
        otro_emprendedor: User,
        emprendedor_headers: dict,
        make_client,
    ) -> None:
        mine = await make_client(emprendedor)
        await make_client(otro_emprendedor)

        response = await client.get("/api/clients", headers=emprendedor_headers)
        assert response.status_code == 200

        data = response.json()
        assert [c["id"] for c in data["clients"]] == [mine.id]
        assert data["pagination"]["total"] == 1

    async def test_list_clients_referred_by_is_visible(
        self,
        client: AsyncClient,
        emprendedor: User,
        otro_emprendedor: User,
        emprendedor_headers: dict,
        make_client,
    ) -> None:
        """Quien refirió al cliente también lo ve."""
        referred = await make_client(otro_emprendedor, referred_by_id=emprendedor.id)
        response = await client.get("/api/clients", headers=emprendedor_headers)
        assert [c["id"] for c in response.json()["clients"]] == [referred.id]

    async def test_list_clients_admin_sees_all(
        self,
        client: AsyncClient,
        emprendedor: User,
        otro_emprendedor: User,
        admin_headers: dict,
        make_client,
    ) -> None:
        await make_client(emprendedor)
        await make_client(otro_emprendedor)

        response = await client.get("/api/clients", headers=admin_headers)
        assert response.json()["pagination"]["total"] == 2

    async def test_list_clients_search_does_not_widen_visibility(
        self,
        client: AsyncClient,
        emprendedor: User,
        otro_emprendedor: User,
        emprendedor_headers: dict,
        make_client,
    ) -> None:
        """Buscar el nombre de un cliente ajeno no lo hace visible."""
        await make_client(emprendedor, nombre="Marta")
        await make_client(otro_emprendedor, nombre="Rodolfo")

        response = await client.get("/api/clients?search=rodolfo", headers=emprendedor_headers)
        assert response.status_code == 200
        assert response.json()["clients"] == []

    async def test_list_clients_search_is_case_insensitive(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        target = await make_client(emprendedor, empresa="Acme Global")
        await make_client(emprendedor, empresa="Otra")

        response = await client.get("/api/clients?search=aCmE", headers=emprendedor_headers)
        assert [c["id"] for c in response.json()["clients"]] == [target.id]

    async def test_list_clients_search_one_char_returns_400(
        self, client: AsyncClient, emprendedor_headers: dict
    ) -> None:
        response = await client.get("/api/clients?search=a", headers=emprendedor_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "El término de búsqueda debe tener al menos 2 caracteres"

    async def test_list_clients_filter_by_tags_any(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        """tags=a,b devuelve los clientes con al menos uno de los tags."""
        vip = await make_client(emprendedor, tags=["vip"])
        frio = await make_client(emprendedor, tags=["frio", "otro"])
        await make_client(emprendedor, tags=["vipero"])

        response = await client.get("/api/clients?tags=vip,frio", headers=emprendedor_headers)
        ids = {c["id"] for c in response.json()["clients"]}
        assert ids == {vip.id, frio.id}

    async def test_list_clients_assigned_to_filter_ignored_for_emprendedor(
        self,
        client: AsyncClient,
        emprendedor: User,
        otro_emprendedor: User,
        emprendedor_headers: dict,
        make_client,
    ) -> None:
        await make_client(emprendedor)
        await make_client(otro_emprendedor)

        response = await client.get(
            f"/api/clients?assignedTo={otro_emprendedor.id}", headers=emprendedor_headers
        )
        assert response.json()["pagination"]["total"] == 1

    async def test_list_clients_assigned_to_filter_for_admin(
        self,
        client: AsyncClient,
        emprendedor: User,
        otro_emprendedor: User,
        admin_headers: dict,
        make_client,
    ) -> None:
        await make_client(emprendedor)
        target = await make_client(otro_emprendedor)

        response = await client.get(f"/api/clients?assignedTo={otro_emprendedor.id}", headers=admin_headers)
        assert [c["id"] for c in response.json()["clients"]] == [target.id]

    async def test_list_clients_pagination_and_sort(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        for nombre in ("Carla", "Alberto", "Beatriz"):
            await make_client(emprendedor, nombre=nombre)

        response = await client.get(
            "/api/clients?sortBy=nombre&sortOrder=asc&limit=2&page=2", headers=emprendedor_headers
        )
        data = response.json()
        assert [c["nombre"] for c in data["clients"]] == ["Carla"]
        assert data["pagination"] == {"total": 3, "page": 2, "limit": 2, "pages": 2}

    async def test_list_clients_invalid_sort_returns_400(
        self, client: AsyncClient, emprendedor_headers: dict
    ) -> None:
        response = await client.get("/api/clients?sortBy=passwordHash", headers=emprendedor_headers)
        assert response.status_code == 400

    async def test_search_endpoint_requires_two_chars(
        self, client: AsyncClient, emprendedor_headers: dict
    ) -> None:
        response = await client.get("/api/clients/search?q=x", headers=emprendedor_headers)
        assert response.status_code == 400

    async def test_search_endpoint_finds_by_phone(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        target = await make_client(emprendedor, telefono="+5491177788")
        response = await client.get("/api/clients/search?q=77788", headers=emprendedor_headers)
        data = response.json()
        assert data["count"] == 1
        assert data["clients"][0]["id"] == target.id


# ============================================
# GET/PUT/DELETE /api/clients/{id}
# ============================================


class TestClientDetail:
    """Tests para detalle, edición, borrado y duplicado."""

    async def test_get_client_of_other_owner_returns_403(
        self, client: AsyncClient, otro_emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        other = await make_client(otro_emprendedor)
        response = await client.get(f"/api/clients/{other.id}", headers=emprendedor_headers)
        assert response.status_code == 403

    async def test_get_client_unknown_id_returns_404(
        self, client: AsyncClient, emprendedor_headers: dict
    ) -> None:
        response = await client.get("/api/clients/9999", headers=emprendedor_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "Cliente no encontrado"

    async def test_get_client_as_asistente_assigned_returns_200(
        self,
        client: AsyncClient,
        emprendedor: User,
        asistente: User,
        asistente_headers: dict,
        make_client,
    ) -> None:
        """El asistente ve lo que tiene asignado aunque no lo haya creado."""
        assigned = await make_client(emprendedor, assigned_to_id=asistente.id)
        response = await client.get(f"/api/clients/{assigned.id}", headers=asistente_headers)
        assert response.status_code == 200

    async def test_update_client_partial_keeps_other_fields(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        own = await make_client(emprendedor, empresa="Acme")
        response = await client.put(
            f"/api/clients/{own.id}",
            json={"etapa": "Negociación", "tags": ["caliente"]},
            headers=emprendedor_headers,
        )
        assert response.status_code == 200

        data = response.json()
        assert data["etapa"] == "Negociación"
        assert data["tags"] == ["caliente"]
        assert data["empresa"] == "Acme"

    async def test_update_client_phone_collision_returns_400(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        first = await make_client(emprendedor)
        second = await make_client(emprendedor)
        response = await client.put(
            f"/api/clients/{second.id}",
            json={"telefono": first.telefono},
            headers=emprendedor_headers,
        )
        assert response.status_code == 400
        assert response.json()["existingClient"]["id"] == first.id

    async def test_update_client_of_other_owner_returns_403(
        self, client: AsyncClient, otro_emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        other = await make_client(otro_emprendedor)
        response = await client.put(
            f"/api/clients/{other.id}", json={"etapa": "Robado"}, headers=emprendedor_headers
        )
        assert response.status_code == 403

    async def test_delete_client_without_relations_returns_200(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        own = await make_client(emprendedor)
        response = await client.delete(f"/api/clients/{own.id}", headers=emprendedor_headers)
        assert response.status_code == 200

        gone = await client.get(f"/api/clients/{own.id}", headers=emprendedor_headers)
        assert gone.status_code == 404

    async def test_delete_client_with_pipeline_item_returns_400(
        self,
        client: AsyncClient,
        emprendedor: User,
        emprendedor_headers: dict,
        make_client,
        make_item,
        make_task,
    ) -> None:
        """Un cliente con deals o tareas no se borra; se listan los conteos."""
        own = await make_client(emprendedor)
        await make_item(emprendedor, own)
        await make_task(emprendedor, client_id=own.id)

        response = await client.delete(f"/api/clients/{own.id}", headers=emprendedor_headers)
        assert response.status_code == 400
        assert response.json()["relatedRecords"] == {"sales": 0, "tasks": 1, "pipelineItems": 1}

    async def test_duplicate_client_creates_copy_with_unique_contact(
        self,
        client: AsyncClient,
        emprendedor: User,
        emprendedor_headers: dict,
        make_client,
    ) -> None:
        own = await make_client(emprendedor, nombre="Lucia")
        response = await client.post(f"/api/clients/{own.id}/duplicate", headers=emprendedor_headers)
        assert response.status_code == 201

        copy = response.json()
        assert copy["id"] != own.id
        assert copy["nombre"] == "Lucia (Copia)"
        assert copy["telefono"].startswith(f"{own.telefono}_copia_")
        assert copy["email"].startswith("copia_")
        assert copy["assignedToId"] == emprendedor.id


# ============================================
# Operaciones masivas y por usuario
# ============================================


class TestBulkAndUserClients:
    """bulk-update y /clients/user/{id} son solo para privilegiados."""

    async def test_bulk_update_as_emprendedor_returns_403(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        own = await make_client(emprendedor)
        response = await client.post(
            "/api/clients/bulk-update",
            json={"clientIds": [own.id], "updates": {"estado": "INACTIVO"}},
            headers=emprendedor_headers,
        )
        assert response.status_code == 403
        assert response.json()["requiredRoles"] == ["SUPER_ADMIN", "DISTRIBUIDOR"]

    async def test_bulk_update_as_admin_updates_all(
        self, client: AsyncClient, emprendedor: User, admin_headers: dict, make_client
    ) -> None:
        first = await make_client(emprendedor)
        second = await make_client(emprendedor)

        response = await client.post(
            "/api/clients/bulk-update",
            json={"clientIds": [first.id, second.id], "updates": {"estado": "INACTIVO"}},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["updated"] == 2

        detail = await client.get(f"/api/clients/{second.id}", headers=admin_headers)
        assert detail.json()["estado"] == "INACTIVO"

    async def test_bulk_update_with_missing_id_returns_404_and_changes_nothing(
        self, client: AsyncClient, emprendedor: User, admin_headers: dict, make_client
    ) -> None:
        own = await make_client(emprendedor)
        response = await client.post(
            "/api/clients/bulk-update",
            json={"clientIds": [own.id, 9999], "updates": {"estado": "INACTIVO"}},
            headers=admin_headers,
        )
        assert response.status_code == 404
        assert "9999" in response.json()["error"]

        detail = await client.get(f"/api/clients/{own.id}", headers=admin_headers)
        assert detail.json()["estado"] == "ACTIVO"

    async def test_clients_for_user_as_distribuidor_returns_list(
        self,
        client: AsyncClient,
        emprendedor: User,
        otro_emprendedor: User,
        distribuidor_headers: dict,
        make_client,
    ) -> None:
        target = await make_client(emprendedor)
        await make_client(otro_emprendedor)

        response = await client.get(f"/api/clients/user/{emprendedor.id}", headers=distribuidor_headers)
        assert response.status_code == 200
        assert [c["id"] for c in response.json()["clients"]] == [target.id]

    async def test_clients_for_user_as_emprendedor_returns_403(
        self, client: AsyncClient, otro_emprendedor: User, emprendedor_headers: dict
    ) -> None:
        response = await client.get(f"/api/clients/user/{otro_emprendedor.id}", headers=emprendedor_headers)
        assert response.status_code == 403


# ============================================
# Estadísticas y resúmenes
# ============================================


class TestClientStats:
    """Tests para stats, my/summary y my/recent."""

    async def test_stats_as_emprendedor_has_no_by_user(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        await make_client(emprendedor, source="REFERIDO")
        await make_client(emprendedor, estado="INACTIVO")

        response = await client.get("/api/clients/stats", headers=emprendedor_headers)
        assert response.status_code == 200

        data = response.json()
        assert data["total"] == 2
        assert data["active"] == 1
        assert data["inactive"] == 1
        assert data["recent"] == 2
        assert data["bySource"] == {"REFERIDO": 1, "OTRO": 1}
        assert data["byEtapa"] == {"SIN_DEFINIR": 2}
        assert data["byUser"] is None

    async def test_stats_as_admin_includes_by_user(
        self,
        client: AsyncClient,
        emprendedor: User,
        otro_emprendedor: User,
        admin_headers: dict,
        make_client,
    ) -> None:
        await make_client(emprendedor)
        await make_client(emprendedor)
        await make_client(otro_emprendedor)

        response = await client.get("/api/clients/stats", headers=admin_headers)
        by_user = response.json()["byUser"]
        assert by_user[0] == {"userId": emprendedor.id, "name": "Eva Emprendedora", "count": 2}
        assert by_user[1]["count"] == 1

    async def test_my_summary_reports_user_info(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        await make_client(emprendedor, etapa="Prospecto")

        response = await client.get("/api/clients/my/summary", headers=emprendedor_headers)
        assert response.status_code == 200

        data = response.json()
        assert data["summary"]["total"] == 1
        assert data["distribution"]["byEtapa"] == {"Prospecto": 1}
        assert data["userInfo"] == {"name": "Eva Emprendedora", "role": "EMPRENDEDOR", "canViewAll": False}

    async def test_my_recent_respects_limit(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        for _ in range(3):
            await make_client(emprendedor)

        response = await client.get("/api/clients/my/recent?limit=2", headers=emprendedor_headers)
        assert response.json()["count"] == 2


# ============================================
# Importación, duplicados y Excel
# ============================================


class TestImportAndDuplicates:
    """Reconciliación de contactos: creados, duplicados y errores."""

    async def test_import_contacts_buckets_add_up_to_total(
        self,
        client: AsyncClient,
        emprendedor: User,
        emprendedor_headers: dict,
        make_client,
    ) -> None:
        """Cada fila acaba en exactamente un bucket."""
        existing = await make_client(emprendedor, telefono="+5491100001")
        contacts = [
            {"nombre": "Nuevo", "apellido": "Uno", "telefono": "+5491100002"},
            {"nombre": "Repetido", "apellido": "Tel", "telefono": existing.telefono},
            {"nombre": "Sin", "apellido": "Telefono"},
            {"nombre": "Mal", "apellido": "Email", "telefono": "+5491100003", "email": "no-es-email"},
        ]

        response = await client.post(
            "/api/clients/import-contacts", json={"contacts": contacts}, headers=emprendedor_headers
        )
        assert response.status_code == 200

        data = response.json()
        assert data["summary"] == {"total": 4, "created": 1, "duplicates": 1, "errors": 2}
        assert data["createdClients"][0]["nombre"] == "Nuevo"
        assert data["duplicates"][0]["existing"]["id"] == existing.id
        assert {e["row"] for e in data["errors"]} == {3, 4}
        assert "telefono" in data["errors"][0]["error"]

    async def test_import_contacts_same_phone_twice_in_batch_is_duplicate(
        self, client: AsyncClient, emprendedor_headers: dict
    ) -> None:
        """La segunda fila ve lo creado por la primera."""
        contacts = [
            {"nombre": "Primera", "apellido": "Fila", "telefono": "+5491199999"},
            {"nombre": "Segunda", "apellido": "Fila", "telefono": "+5491199999"},
        ]
        response = await client.post(
            "/api/clients/import-contacts", json={"contacts": contacts}, headers=emprendedor_headers
        )
        summary = response.json()["summary"]
        assert summary == {"total": 2, "created": 1, "duplicates": 1, "errors": 0}

    async def test_import_contacts_other_owner_phone_is_not_duplicate(
        self,
        client: AsyncClient,
        otro_emprendedor: User,
        emprendedor: User,
        emprendedor_headers: dict,
        make_client,
    ) -> None:
        """Para un emprendedor, solo chocan sus propios clientes."""
        await make_client(otro_emprendedor, telefono="+5491155555")
        response = await client.post(
            "/api/clients/import-contacts",
            json={"contacts": [{"nombre": "Ajeno", "apellido": "Tel", "telefono": "+5491155555"}]},
            headers=emprendedor_headers,
        )
        data = response.json()
        assert data["summary"]["created"] == 1

        created = await client.get(
            f"/api/clients/{data['createdClients'][0]['id']}", headers=emprendedor_headers
        )
        assert created.json()["createdById"] == emprendedor.id
        assert created.json()["assignedToId"] == emprendedor.id

    async def test_check_duplicates_reports_matches(
        self, client: AsyncClient, emprendedor: User, emprendedor_headers: dict, make_client
    ) -> None:
        existing = await make_client(emprendedor, email="ya@correo.com")
        response = await client.post(
            "/api/clients/check-duplicates",
            json={
                "contacts": [
                    {"nombre": "A", "apellido": "B", "email": "ya@correo.com"},
                    {"nombre": "C", "apellido": "D", "telefono": "+5490000000"},
                ]
            },
            headers=emprendedor_headers,
        )
        assert response.status_code == 200

        data = response.json()
        assert data["totalChecked"] == 2
        assert data["duplicatesFound"] == 1
        assert data["duplicates"][0]["existing"]["id"] == existing.id
        assert data["canProceed"] is True

    async def test_import_excel_template_creates_example_rows(
        self, client: AsyncClient, emprendedor_headers: dict
    ) -> None:
        """La plantilla descargable se puede importar tal cual."""
        response = await client.post(
            "/api/clients/import",
            files={"file": ("clientes.xlsx", import_template_xlsx(), XLSX)},
            headers=emprendedor_headers,
        )
        assert response.status_code == 200

        data = response.json()
        assert data["summary"] == {"total": 2, "created": 2, "duplicates": 0, "errors": 0}
        names = {c["nombre"] for c in data["createdClients"]}
        assert names == {"Juan", "María"}

    async def test_import_non_excel_file_returns_400(
        self, client: AsyncClient, emprendedor_headers: dict
    ) -> None:
        response = await client.post(
            "/api/clients/import",
            files={"file": ("clientes.csv", b"nombre,apellido\n", "text/csv")},
            headers=emprendedor_headers,
        )
        assert response.status_code == 400

    async def test_import_excel_missing_columns_returns_400(
        self, client: AsyncClient, emprendedor_headers: dict
    ) -> None:
        buffer = io.BytesIO()
        pd.DataFrame([{"nombre": "Solo", "apellido": "Nombre"}]).to_excel(buffer, index=False)
        response = await client.post(
            "/api/clients/import",
            files={"file": ("clientes.xlsx", buffer.getvalue(), XLSX)},
            headers=emprendedor_headers,
        )
        assert response.status_code == 400
        assert "telefono" in response.json()["error"]

    async def test_export_returns_visible_clients_as_xlsx(
        self,
        client: AsyncClient,
        emprendedor: User,
        otro_emprendedor: User,
        emprendedor_headers: dict,
        make_client,
    ) -> None:
        await make_client(emprendedor, nombre="Visible")
        await make_client(otro_emprendedor, nombre="Oculto")

        response = await client.get("/api/clients/export", headers=emprendedor_headers)
        assert response.status_code == 200
        assert response.headers["content-type"] == XLSX

        frame = pd.read_excel(io.BytesIO(response.content))
        assert list(frame["Nombre"]) == ["Visible"]

    async def test_import_template_download_has_instructions(
        self, client: AsyncClient, emprendedor_headers: dict
    ) -> None:
        response = await client.get("/api/clients/import-template", headers=emprendedor_headers)
        assert response.status_code == 200

        sheets = pd.read_excel(io.BytesIO(response.content), sheet_name=None)
        assert set(sheets) == {"Clientes", "Instrucciones"}


# ============================================
# Promoción del cliente al ganar un deal
# ============================================


class TestClientPromotion:
    """Un deal ganado convierte al cliente en "Cliente"."""

    async def test_won_deal_promotes_client_stage(
        self,
        client: AsyncClient,
        emprendedor: User,
        emprendedor_headers: dict,
        make_client,
        make_item,
    ) -> None:
        own = await make_client(emprendedor, etapa="Prospecto")
        item = await make_item(emprendedor, own)

        response = await client.patch(
            f"/api/pipeline/{item.id}/status",
            json={"status": PipelineStatus.VENTA_NUEVA.value},
            headers=emprendedor_headers,
        )
        assert response.status_code == 200

        detail = await client.get(f"/api/clients/{own.id}", headers=emprendedor_headers)
        assert detail.json()["etapa"] == "Cliente"
