"""Integration tests for the internal calculator and the public web form."""

from __future__ import annotations

import json

import pytest
from sqlalchemy import select

from corrucalc.db.models import PublicQuoteModel

pytestmark = pytest.mark.integration

CALCULATE = "/api/quotes/calculate"
WEB_FORM = "/api/public/quotes"


def box(quantity=500, **overrides):
    return {"length_mm": 400, "width_mm": 300, "height_mm": 200, "quantity": quantity, **overrides}


def form(**overrides):
    data = {
        "requester_name": "Ana Gómez",
        "requester_email": " Ana@Cartones.com ",
        "requester_phone": "+54 9 11 5555-0000",
        "requester_company": "Cartones SA",
        "message": "Entrega en Quilmes",
        "distance_km": 12,
        **box(quantity=1000),
    }
    data.update(overrides)
    return data


class TestCalculate:
    @pytest.mark.asyncio
    async def test_quote_with_shipping_and_payment(self, client, active_pricing):
        response = await client.post(
            CALCULATE, json={"boxes": [box()], "client_distance_km": 30}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["quote"]["subtotal"] == 253750.0
        assert body["quote"]["below_minimum"] is False
        assert body["payment"] == {"deposit": 126875.0, "balance": 126875.0}
        assert body["production_days"] == 7
        assert body["shipping"]["free"] is False
        assert body["shipping"]["notes"].startswith("Envío a cotizar")
        assert body["shipping"]["notes"] in body["warnings"]

    @pytest.mark.asyncio
    async def test_free_shipping(self, client, active_pricing):
        # 6000 x 0.725 = 4350 m2, over the 4000 m2 truck minimum
        response = await client.post(
            CALCULATE, json={"boxes": [box(quantity=6000)], "client_distance_km": 20}
        )

        body = response.json()
        assert body["shipping"]["free"] is True
        assert body["shipping"]["notes"].startswith("Envío gratis")
        assert body["warnings"] == []

    @pytest.mark.asyncio
    async def test_without_distance(self, client, active_pricing):
        response = await client.post(CALCULATE, json={"boxes": [box()]})

        body = response.json()
        assert body["shipping"]["free"] is False
        assert "no especificada" in body["shipping"]["notes"]
        assert body["warnings"] == []

    @pytest.mark.asyncio
    async def test_fallback_pricing(self, client):
        response = await client.post(CALCULATE, json={"boxes": [box(quantity=5000)]})

        assert response.status_code == 200
        body = response.json()
        assert body["quote"]["is_fallback_pricing"] is True
        assert body["quote"]["subtotal"] == 2682500.0
        assert any("Precios de referencia" in w for w in body["warnings"])

    @pytest.mark.asyncio
    async def test_below_floor_is_flagged_not_rejected(self, client, active_pricing):
        response = await client.post(CALCULATE, json={"boxes": [box(quantity=100)]})

        assert response.status_code == 200
        body = response.json()
        assert body["quote"]["below_minimum"] is True
        assert body["quote"]["subtotal"] == 61625.0
        assert any("mínimo absoluto" in w for w in body["warnings"])

    @pytest.mark.asyncio
    async def test_undersized_box_rejected(self, client, active_pricing):
        response = await client.post(
            CALCULATE, json={"boxes": [box(length_mm=150, width_mm=150, height_mm=80)]}
        )

        assert response.status_code == 400
        assert "tamaño mínimo" in response.json()["errors"][0]

    @pytest.mark.asyncio
    async def test_bad_distance(self, client, active_pricing):
        response = await client.post(
            CALCULATE, json={"boxes": [box()], "client_distance_km": "lejos"}
        )

        assert response.status_code == 400
        assert response.json()["errors"] == ["client_distance_km must be a number"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
    async def test_non_finite_distance(self, client, active_pricing, literal):
        content = json.dumps({"boxes": [box()]})[:-1] + f', "client_distance_km": {literal}}}'

        response = await client.post(
            CALCULATE, content=content, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["errors"] == ["client_distance_km must be a number"]

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        response = await client.post(
            CALCULATE, content=b"[", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON body"


class TestPublicWebForm:
    @pytest.mark.asyncio
    async def test_saves_lead(self, client, session_scope, active_pricing):
        response = await client.post(WEB_FORM, json=form())

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["quote"]["subtotal"] == 507500.0
        assert body["shipping_free"] is False

        async with session_scope() as session:
            row = (await session.execute(select(PublicQuoteModel))).scalar_one()
        assert str(row.id) == body["id"]
        assert row.requester_email == "ana@cartones.com"
        assert row.requester_phone == "5491155550000"
        assert row.requester_company == "Cartones SA"
        assert row.boxes[0]["quantity"] == 1000
        assert row.status == "pending"

    @pytest.mark.asyncio
    async def test_notifies_sales(self, client, services, notifier, active_pricing):
        await client.post(WEB_FORM, json=form())
        await services.dispatcher.drain()

        assert sorted(notifier.kinds()) == ["high_value_quote", "web_form_lead"]
        lead = next(n for n in notifier.sent if n.kind.value == "web_form_lead")
        assert lead.contact.name == "Ana Gómez"
        assert lead.origin == "Web"

    @pytest.mark.asyncio
    async def test_missing_requester_fields(self, client, active_pricing):
        response = await client.post(
            WEB_FORM, json=form(requester_name="", requester_email="", requester_phone=None)
        )

        assert response.status_code == 400
        errors = response.json()["errors"]
        assert "El nombre es requerido" in errors
        assert "El email es requerido" in errors
        assert "El teléfono es requerido" in errors

    @pytest.mark.asyncio
    async def test_invalid_email(self, client, active_pricing):
        response = await client.post(WEB_FORM, json=form(requester_email="ana@cartones"))

        assert response.status_code == 400
        assert response.json()["errors"] == ["El email no es válido"]

    @pytest.mark.asyncio
    async def test_nan_distance(self, client, active_pricing):
        content = json.dumps(form())[:-1] + ', "distance_km": NaN}'

        response = await client.post(
            WEB_FORM, content=content, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["errors"] == ["distance_km must be a number"]

    @pytest.mark.asyncio
    async def test_minimum_quantity(self, client, session_scope, active_pricing):
        response = await client.post(WEB_FORM, json=form(quantity=50))

        assert response.status_code == 400
        assert "La cantidad mínima es 100 unidades" in response.json()["errors"]
        async with session_scope() as session:
            assert (await session.execute(select(PublicQuoteModel))).first() is None
