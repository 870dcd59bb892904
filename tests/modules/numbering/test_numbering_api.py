from httpx import AsyncClient

from src.core.documents import DocumentType, NumberAuthority

BASE = "/api/v1/numbering"


class TestGenerateApi:
    async def test_generate(self, client: AsyncClient):
        response = await client.post(
            f"{BASE}/invoice/generate", json={"year": 2026, "linked_entity_id": "order-1"}
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data == {"document_type": "INVOICE", "number": "F A20260001"}

    async def test_generate_sequential(self, client: AsyncClient):
        for expected in ("F PO20260001", "F PO20260002"):
            response = await client.post(f"{BASE}/PURCHASE_ORDER/generate", json={"year": 2026})
            assert response.json()["data"]["number"] == expected

    async def test_unknown_type(self, client: AsyncClient):
        response = await client.post(f"{BASE}/credit_note/generate", json={})

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "document_type"

    async def test_maintenance_conflict(self, client: AsyncClient, authority: NumberAuthority):
        await authority.policies.acquire_maintenance(DocumentType.INVOICE, "script", 900)

        response = await client.post(f"{BASE}/invoice/generate", json={"year": 2026})

        assert response.status_code == 409
        assert response.json()["success"] is False

    async def test_preview(self, client: AsyncClient):
        first = await client.get(f"{BASE}/quote/preview", params={"year": 2026})
        second = await client.get(f"{BASE}/quote/preview", params={"year": 2026})

        assert first.status_code == 200
        assert first.json()["data"]["number"] == "F D20260001"
        assert second.json()["data"] == first.json()["data"]


class TestMaintenanceApi:
    async def test_reset_requires_confirmation(self, client: AsyncClient, authority: NumberAuthority):
        await authority.allocate(DocumentType.INVOICE, year=2026)

        response = await client.post(f"{BASE}/invoice/reset", json={"year": 2026})

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "confirm"
        assert await authority.number_exists("F A20260001")

    async def test_reset(self, client: AsyncClient, authority: NumberAuthority):
        await authority.allocate(DocumentType.INVOICE, year=2026)
        await authority.allocate(DocumentType.INVOICE, year=2026)

        response = await client.post(
            f"{BASE}/invoice/reset", json={"year": 2026, "confirm": True, "actor": "admin"}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["deleted"] == 2
        assert data["next_number"] == "F A20260001"

    async def test_diagnose_and_repair(self, client: AsyncClient, authority: NumberAuthority):
        await authority.allocate(DocumentType.INVOICE, year=2026)

        diagnose = await client.get(f"{BASE}/invoice/diagnose")
        repair = await client.post(f"{BASE}/invoice/repair", json={"actor": "admin"})

        assert diagnose.status_code == 200
        assert diagnose.json()["data"]["dry_run"] is True
        assert diagnose.json()["data"]["is_clean"] is True
        assert repair.status_code == 200
        assert repair.json()["data"]["dry_run"] is False
        assert repair.json()["data"]["issues"] == []


class TestNumbersApi:
    async def test_lookup_and_release(self, client: AsyncClient, authority: NumberAuthority):
        number = await authority.allocate(DocumentType.INVOICE, year=2026, linked_entity_id="o-7")

        linked = await client.get(f"{BASE}/numbers/linked/o-7")
        assert linked.json()["data"] == {"document_type": "INVOICE", "number": number}

        exists = await client.get(f"{BASE}/numbers/lookup", params={"number": number})
        assert exists.json()["data"]["exists"] is True

        released = await client.delete(f"{BASE}/numbers", params={"number": number})
        assert released.status_code == 200

        exists = await client.get(f"{BASE}/numbers/lookup", params={"number": number})
        assert exists.json()["data"]["exists"] is False

    async def test_release_unknown(self, client: AsyncClient):
        response = await client.delete(f"{BASE}/numbers", params={"number": "F A20260001"})
        assert response.status_code == 404

    async def test_release_twice(self, client: AsyncClient, authority: NumberAuthority):
        number = await authority.allocate(DocumentType.INVOICE, year=2026)
        await client.delete(f"{BASE}/numbers", params={"number": number})

        response = await client.delete(f"{BASE}/numbers", params={"number": number})

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "number"

    async def test_linked_missing(self, client: AsyncClient):
        response = await client.get(f"{BASE}/numbers/linked/nothing")
        assert response.status_code == 200
        assert response.json()["data"] is None


class TestPoliciesApi:
    async def test_list(self, client: AsyncClient):
        response = await client.get(f"{BASE}/policies")

        assert response.status_code == 200
        types = {p["document_type"] for p in response.json()["data"]}
        assert types == {t.value for t in DocumentType}

    async def test_update(self, client: AsyncClient):
        response = await client.put(
            f"{BASE}/policies/delivery", json={"start_number": 10, "reset_period": "never"}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["start_number"] == 10
        assert data["reset_period"] == "never"

        generated = await client.post(f"{BASE}/delivery/generate", json={"year": 2026})
        assert generated.json()["data"]["number"] == "F L20260010"

    async def test_monthly_rejected(self, client: AsyncClient):
        response = await client.put(f"{BASE}/policies/invoice", json={"reset_period": "monthly"})

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "reset_period"

    async def test_invalid_start_number(self, client: AsyncClient):
        response = await client.put(f"{BASE}/policies/invoice", json={"start_number": 0})
        assert response.status_code == 422

    async def test_invalidate(self, client: AsyncClient):
        response = await client.post(f"{BASE}/policies/invalidate")
        assert response.status_code == 200
        assert response.json()["success"] is True
