from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from supply_ledger import crud
from supply_ledger.api import create_app
from supply_ledger.config import Settings
from supply_ledger.errors import ValidationError
from supply_ledger.models import User
from supply_ledger.schemas import ItemCreate, LocationIn
from supply_ledger.values import Building, Identity, MaterialType, Role, UnitOfMeasure

ITEMS = "/api/inventario"
AREA = "DIRECCIÓN ADMINISTRATIVA"


def _item_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "materialType": "oficina",
        "name": "Paper",
        "unitOfMeasure": "caja",
        "quantity": 0,
        "location": {"building": "adm", "shelf": "b", "level": 2, "notes": "junto a la puerta"},
    }
    payload.update(overrides)
    return payload


def _exit_payload(quantity: int, **overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "quantity": quantity,
        "reason": "Consumo mensual",
        "area": AREA,
        "requester": "Ana Pérez",
        "releaser": "Luis Gómez",
        "time": "09:15",
    }
    payload.update(overrides)
    return payload


async def _create(client: AsyncClient, headers: Dict[str, str], **overrides: Any) -> Dict[str, Any]:
    response = await client.post(ITEMS, json=_item_payload(**overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def test_health_check(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "environment": "test"}


async def test_token_errors_are_reported_distinctly(client: AsyncClient, users) -> None:
    missing = await client.get(ITEMS)
    assert missing.status_code == 401
    assert missing.json()["code"] == "MISSING_TOKEN"
    assert missing.json()["status"] == "error"

    wrong_scheme = await client.get(ITEMS, headers={"Authorization": "Token abc"})
    assert wrong_scheme.json()["code"] == "MALFORMED_TOKEN"

    garbage = await client.get(ITEMS, headers={"Authorization": "Bearer abc"})
    assert garbage.status_code == 401
    assert garbage.json()["code"] == "MALFORMED_TOKEN"


async def test_login_refresh_profile_logout(client: AsyncClient, users) -> None:
    login = await client.post(
        "/api/auth/login", json={"username": "clerk", "password": "clerk-secret"}
    )
    assert login.status_code == 200
    body = login.json()
    assert body["status"] == "success"
    assert body["user"] == {"id": users["clerk"].id, "username": "clerk", "role": "user"}
    assert "password" not in str(body["user"]).lower()

    refreshed = await client.post(
        "/api/auth/refresh-token", json={"refreshToken": body["refreshToken"]}
    )
    assert refreshed.status_code == 200
    headers = {"Authorization": f"Bearer {refreshed.json()['accessToken']}"}

    profile = await client.get("/api/auth/profile", headers=headers)
    assert profile.status_code == 200
    assert profile.json()["data"]["username"] == "clerk"

    logout = await client.post("/api/auth/logout", headers=headers)
    assert logout.status_code == 200
    assert logout.json()["status"] == "success"


async def test_login_failures_share_one_shape(client: AsyncClient, users) -> None:
    wrong_password = await client.post(
        "/api/auth/login", json={"username": "clerk", "password": "nope"}
    )
    unknown_user = await client.post(
        "/api/auth/login", json={"username": "nobody", "password": "clerk-secret"}
    )
    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.json() == unknown_user.json()
    assert wrong_password.json()["code"] == "INVALID_CREDENTIALS"


async def test_refresh_endpoint_error_codes(client: AsyncClient, users) -> None:
    missing = await client.post("/api/auth/refresh-token", json={})
    assert missing.status_code == 401
    assert missing.json()["code"] == "MISSING_REFRESH_TOKEN"

    corrupt = await client.post("/api/auth/refresh-token", json={"refreshToken": "x.y.z"})
    assert corrupt.status_code == 401
    assert corrupt.json()["code"] == "INVALID_REFRESH_TOKEN"


async def test_register_is_admin_only(
    client: AsyncClient, admin_headers: Dict[str, str], clerk_headers: Dict[str, str]
) -> None:
    new_user = {"username": "almacen", "password": "almacen-pass", "role": "user"}

    forbidden = await client.post("/api/auth/register", json=new_user, headers=clerk_headers)
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "FORBIDDEN"

    created = await client.post("/api/auth/register", json=new_user, headers=admin_headers)
    assert created.status_code == 201
    assert created.json()["data"]["username"] == "almacen"

    duplicate = await client.post("/api/auth/register", json=new_user, headers=admin_headers)
    assert duplicate.status_code == 409

    short = await client.post(
        "/api/auth/register",
        json={"username": "x", "password": "123", "role": "admin"},
        headers=admin_headers,
    )
    assert short.status_code == 400
    assert short.json()["errors"][0]["field"] == "password"


async def test_create_item_generates_location_code(
    client: AsyncClient, admin_headers: Dict[str, str], users
) -> None:
    item = await _create(client, admin_headers)

    assert item["locationCode"].startswith("ADM-AB-N2-")
    assert item["location"] == {
        "building": "ADM",
        "shelf": "B",
        "level": 2,
        "notes": "JUNTO A LA PUERTA",
    }
    assert item["quantity"] == 0
    assert item["entries"] == [] and item["exits"] == []
    assert item["createdBy"]["username"] == "admin"
    assert item["modifiedBy"] == item["createdBy"]
    assert item["demandMetrics"]["totalExits"] == 0


async def test_initial_quantity_is_recorded_as_entry(
    client: AsyncClient, admin_headers: Dict[str, str]
) -> None:
    item = await _create(client, admin_headers, quantity=7)

    assert item["quantity"] == 7
    assert [entry["quantity"] for entry in item["entries"]] == [7]
    assert item["entries"][0]["kind"] == "restock"


async def test_colliding_location_code_is_replaced(
    client: AsyncClient, admin_headers: Dict[str, str]
) -> None:
    first = await _create(client, admin_headers, locationCode="ADM-AB-N2-FIXED")
    second = await _create(client, admin_headers, name="Toner", locationCode="ADM-AB-N2-FIXED")

    assert first["locationCode"] == "ADM-AB-N2-FIXED"
    assert second["locationCode"] != first["locationCode"]
    assert second["locationCode"].startswith("ADM-AB-N2-")


async def test_create_requires_admin_and_valid_fields(
    client: AsyncClient, admin_headers: Dict[str, str], clerk_headers: Dict[str, str]
) -> None:
    forbidden = await client.post(ITEMS, json=_item_payload(), headers=clerk_headers)
    assert forbidden.status_code == 403

    invalid = await client.post(
        ITEMS,
        json=_item_payload(materialType="comida", location={"shelf": "B", "level": 0}),
        headers=admin_headers,
    )
    assert invalid.status_code == 400
    body = invalid.json()
    assert body["code"] == "VALIDATION_ERROR"
    fields = {error["field"] for error in body["errors"]}
    assert {"materialType", "location.level"} <= fields


async def test_paper_scenario_over_http(
    client: AsyncClient, admin_headers: Dict[str, str], clerk_headers: Dict[str, str]
) -> None:
    item = await _create(client, admin_headers)
    item_url = f"{ITEMS}/{item['id']}"

    entry = await client.post(
        f"{item_url}/entradas", json={"quantity": 50, "supplier": "Papelera"}, headers=admin_headers
    )
    assert entry.status_code == 200
    assert entry.json()["data"]["quantity"] == 50
    assert len(entry.json()["data"]["entries"]) == 1

    exit_response = await client.post(
        f"{item_url}/salidas", json=_exit_payload(30), headers=clerk_headers
    )
    assert exit_response.status_code == 200
    data = exit_response.json()["data"]
    assert data["quantity"] == 20
    assert data["demandMetrics"]["totalExits"] == 1
    assert data["demandMetrics"]["cumulativeRemoved"] == 30
    assert data["exits"][0]["recordedBy"]["username"] == "clerk"
    assert data["modifiedBy"]["username"] == "clerk"

    too_much = await client.post(f"{item_url}/salidas", json=_exit_payload(25), headers=clerk_headers)
    assert too_much.status_code == 400
    assert too_much.json()["code"] == "INSUFFICIENT_STOCK"
    assert too_much.json()["available"] == 20

    current = await client.get(item_url, headers=clerk_headers)
    assert current.json()["data"]["quantity"] == 20
    assert len(current.json()["data"]["exits"]) == 1


async def test_entries_are_admin_only(
    client: AsyncClient, admin_headers: Dict[str, str], clerk_headers: Dict[str, str]
) -> None:
    item = await _create(client, admin_headers)
    response = await client.post(
        f"{ITEMS}/{item['id']}/entradas", json={"quantity": 5}, headers=clerk_headers
    )
    assert response.status_code == 403


async def test_exit_validation_reports_fields(
    client: AsyncClient, admin_headers: Dict[str, str]
) -> None:
    item = await _create(client, admin_headers, quantity=10)
    payload = _exit_payload(2)
    del payload["requester"]
    payload["area"] = "COCINA"

    response = await client.post(f"{ITEMS}/{item['id']}/salidas", json=payload, headers=admin_headers)

    assert response.status_code == 400
    fields = {error["field"] for error in response.json()["errors"]}
    assert {"requester", "area"} <= fields


async def test_list_search_pagination_and_sort(
    client: AsyncClient, admin_headers: Dict[str, str], clerk_headers: Dict[str, str]
) -> None:
    await _create(client, admin_headers, name="Paper A4")
    await _create(client, admin_headers, name="Paper Carta")
    await _create(
        client,
        admin_headers,
        name="Cloro",
        materialType="limpieza",
        unitOfMeasure="litro",
        location={"building": "TI", "shelf": "Z", "level": 1},
    )

    page = await client.get(ITEMS, params={"pageSize": 2, "page": 1}, headers=clerk_headers)
    body = page.json()
    assert page.status_code == 200
    assert len(body["data"]) == 2
    assert body["pagination"] == {"page": 1, "pageSize": 2, "total": 3, "pages": 2}

    by_name = await client.get(ITEMS, params={"search": "pAPer"}, headers=clerk_headers)
    assert {item["name"] for item in by_name.json()["data"]} == {"Paper A4", "Paper Carta"}

    by_type = await client.get(ITEMS, params={"search": "limp"}, headers=clerk_headers)
    assert [item["name"] for item in by_type.json()["data"]] == ["Cloro"]

    by_code = await client.get(ITEMS, params={"search": "ti-az"}, headers=clerk_headers)
    assert [item["name"] for item in by_code.json()["data"]] == ["Cloro"]

    newest_first = await client.get(ITEMS, params={"sort": "-name"}, headers=clerk_headers)
    assert [item["name"] for item in newest_first.json()["data"]] == [
        "Paper Carta",
        "Paper A4",
        "Cloro",
    ]

    bad_sort = await client.get(ITEMS, params={"sort": "price"}, headers=clerk_headers)
    assert bad_sort.status_code == 400
    assert bad_sort.json()["errors"][0]["field"] == "sort"


async def test_moving_an_item_records_location_change(
    client: AsyncClient, admin_headers: Dict[str, str]
) -> None:
    item = await _create(client, admin_headers, quantity=4)
    item_url = f"{ITEMS}/{item['id']}"

    notes_only = await client.put(
        item_url,
        json={"location": {"building": "ADM", "shelf": "B", "level": 2, "notes": "arriba"}},
        headers=admin_headers,
    )
    assert notes_only.status_code == 200
    assert notes_only.json()["data"]["locationCode"] == item["locationCode"]
    assert notes_only.json()["data"]["location"]["notes"] == "ARRIBA"
    assert len(notes_only.json()["data"]["entries"]) == 1

    moved = await client.put(
        item_url,
        json={"name": "Paper bond", "location": {"building": "TI", "shelf": "c", "level": 5}},
        headers=admin_headers,
    )
    assert moved.status_code == 200
    data = moved.json()["data"]
    assert data["name"] == "Paper bond"
    assert data["locationCode"].startswith("TI-AC-N5-")
    assert data["quantity"] == 4
    change = data["entries"][-1]
    assert change["kind"] == "location_change"
    assert change["quantity"] == 4
    assert change["previousLocation"]["shelf"] == "B"
    assert change["newLocation"] == {"building": "TI", "shelf": "C", "level": 5, "notes": None}


async def test_update_ignores_quantity_and_needs_existing_item(
    client: AsyncClient, admin_headers: Dict[str, str]
) -> None:
    item = await _create(client, admin_headers, quantity=3)

    response = await client.put(
        f"{ITEMS}/{item['id']}", json={"quantity": 999, "minimumStock": 5}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["data"]["quantity"] == 3
    assert response.json()["data"]["minimumStock"] == 5

    missing = await client.put(f"{ITEMS}/9999", json={"name": "x"}, headers=admin_headers)
    assert missing.status_code == 404
    assert missing.json()["code"] == "ITEM_NOT_FOUND"


async def test_audit_trail_newest_first(
    client: AsyncClient, admin_headers: Dict[str, str], clerk_headers: Dict[str, str]
) -> None:
    item = await _create(client, admin_headers)
    item_url = f"{ITEMS}/{item['id']}"
    await client.post(f"{item_url}/entradas", json={"quantity": 10}, headers=admin_headers)
    await client.post(f"{item_url}/entradas", json={"quantity": 5}, headers=admin_headers)
    await client.post(f"{item_url}/salidas", json=_exit_payload(3), headers=clerk_headers)

    response = await client.get(f"{item_url}/auditoria", headers=clerk_headers)

    assert response.status_code == 200
    events = response.json()["data"]
    assert [event["action"] for event in events] == ["exit", "entry", "entry", "creation"]
    dates = [datetime.fromisoformat(event["date"].replace("Z", "+00:00")) for event in events]
    assert dates == sorted(dates, reverse=True)
    assert events[0]["username"] == "clerk"
    assert events[0]["details"]["area"] == AREA


async def test_low_stock_listing(
    client: AsyncClient, admin_headers: Dict[str, str], clerk_headers: Dict[str, str]
) -> None:
    await _create(client, admin_headers, name="Jabón", quantity=2, minimumStock=5)
    await _create(client, admin_headers, name="Lápiz", quantity=50, minimumStock=5)
    await _create(client, admin_headers, name="Clips", quantity=0)

    response = await client.get(f"{ITEMS}/low-stock", headers=clerk_headers)

    assert response.status_code == 200
    assert [item["name"] for item in response.json()["data"]] == ["Jabón"]


async def test_delete_item(
    client: AsyncClient, admin_headers: Dict[str, str], clerk_headers: Dict[str, str]
) -> None:
    item = await _create(client, admin_headers, quantity=5)
    item_url = f"{ITEMS}/{item['id']}"

    forbidden = await client.delete(item_url, headers=clerk_headers)
    assert forbidden.status_code == 403

    deleted = await client.delete(item_url, headers=admin_headers)
    assert deleted.status_code == 200
    assert deleted.json()["status"] == "success"

    gone = await client.get(item_url, headers=admin_headers)
    assert gone.status_code == 404
    again = await client.delete(item_url, headers=admin_headers)
    assert again.status_code == 404


@pytest.mark.parametrize("field", ["unitPrice", "minimumStock", "materialType"])
async def test_update_cannot_clear_required_fields(
    client: AsyncClient, admin_headers: Dict[str, str], field: str
) -> None:
    item = await _create(client, admin_headers, unitPrice=2.5, minimumStock=4)
    item_url = f"{ITEMS}/{item['id']}"

    response = await client.put(
        item_url, json={"name": "Paper bond", field: None}, headers=admin_headers
    )

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert [error["field"] for error in body["errors"]] == [field]

    current = (await client.get(item_url, headers=admin_headers)).json()["data"]
    assert current["name"] == "Paper"
    assert current["unitPrice"] == 2.5
    assert current["minimumStock"] == 4


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"material_type": None}, "materialType"),
        (
            {
                "location": LocationIn.model_construct(
                    building=Building.ADM, shelf="B", level=0, notes=None
                )
            },
            "location.level",
        ),
    ],
)
async def test_storage_constraint_failures_are_validation_errors(
    app: FastAPI,
    session_factory: async_sessionmaker[AsyncSession],
    users: Dict[str, User],
    overrides: Dict[str, Any],
    field: str,
) -> None:
    fields: Dict[str, Any] = {
        "material_type": MaterialType.OFICINA,
        "name": "Paper",
        "description": None,
        "unit_of_measure": UnitOfMeasure.CAJA,
        "unit_price": 0,
        "minimum_stock": 0,
        "quantity": 0,
        "location": LocationIn(shelf="B", level=1),
        "location_code": None,
    }
    fields.update(overrides)
    admin = Identity(users["admin"].id, Role.ADMIN)

    async with session_factory() as session:
        with pytest.raises(ValidationError) as excinfo:
            await crud.create_item(
                session, ItemCreate.model_construct(**fields), admin, app.state.location_codes
            )

    assert excinfo.value.status_code == 400
    assert excinfo.value.code == "VALIDATION_ERROR"
    assert excinfo.value.errors[0]["field"] == field


async def test_role_is_read_from_user_store(
    client: AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
    admin_headers: Dict[str, str],
    users: Dict[str, User],
) -> None:
    async with session_factory() as session:
        admin = await session.get(User, users["admin"].id)
        admin.role = Role.USER
        await session.commit()

    demoted = await client.post(ITEMS, json=_item_payload(), headers=admin_headers)
    assert demoted.status_code == 403
    assert demoted.json()["code"] == "FORBIDDEN"

    reads = await client.get(ITEMS, headers=admin_headers)
    assert reads.status_code == 200

    async with session_factory() as session:
        await session.delete(await session.get(User, users["admin"].id))
        await session.commit()

    removed = await client.get(ITEMS, headers=admin_headers)
    assert removed.status_code == 401
    assert removed.json()["code"] == "INVALID_TOKEN"


async def test_promoted_user_gains_admin_rights_without_new_token(
    client: AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
    clerk_headers: Dict[str, str],
    users: Dict[str, User],
) -> None:
    async with session_factory() as session:
        clerk = await session.get(User, users["clerk"].id)
        clerk.role = Role.ADMIN
        await session.commit()

    response = await client.post(ITEMS, json=_item_payload(), headers=clerk_headers)

    assert response.status_code == 201
    assert response.json()["data"]["createdBy"]["username"] == "clerk"


async def test_move_with_edits_shows_both_events(
    client: AsyncClient, admin_headers: Dict[str, str]
) -> None:
    item = await _create(client, admin_headers, quantity=2)
    item_url = f"{ITEMS}/{item['id']}"

    moved = await client.put(
        item_url,
        json={"description": "Resma carta", "location": {"building": "TI", "shelf": "D", "level": 1}},
        headers=admin_headers,
    )
    assert moved.status_code == 200

    events = (await client.get(f"{item_url}/auditoria", headers=admin_headers)).json()["data"]
    assert [event["action"] for event in events] == [
        "modification",
        "location_change",
        "entry",
        "creation",
    ]
    assert events[0]["date"] == events[1]["date"]
    assert events[1]["details"]["newLocation"]["building"] == "TI"


@pytest.mark.parametrize(
    ("environment", "message"),
    [
        ("production", "Internal server error"),
        ("test", "RuntimeError: shelf sensor offline"),
    ],
)
async def test_unexpected_errors_hide_detail_only_in_production(
    tmp_path, environment: str, message: str
) -> None:
    settings = Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'errors.db'}",
        environment=environment,
        access_token_secret="access-secret-for-error-rendering-tests",
        refresh_token_secret="refresh-secret-for-error-rendering-tests",
    )
    app = create_app(settings)

    @app.get("/explode")
    async def explode() -> None:
        raise RuntimeError("shelf sensor offline")

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/explode")
    finally:
        await app.state.engine.dispose()

    assert response.status_code == 500
    assert response.json() == {"status": "error", "message": message, "code": "INTERNAL_ERROR"}
